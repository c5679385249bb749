"""Credential callback used by every network-touching Git operation.

Backends never read the password off the repository handle themselves.
They call a CredentialsCallback with the URL being contacted, the user name
embedded in that URL (if any) and the credential kinds they can use, and
translate what comes back into per-invocation git configuration:

    - DefaultCredentials: nothing is added, git uses whatever ambient
      helpers or anonymous access it has
    - UsernamePasswordCredentials: an ``http.extraHeader`` Basic
      authorization header, set only for that one git invocation

The callback is invoked once per remote operation and caches nothing.
"""

import base64
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Flag, auto
from urllib.parse import urlsplit

import structlog

from repo_converge.models.domain import RepositoryHandle

log = structlog.get_logger(__name__)

EXTRA_HEADER_KEY = "http.extraHeader"


class CredentialTypes(Flag):
    """Credential kinds a backend is able to use."""

    DEFAULT = auto()
    USERNAME_PASSWORD = auto()


@dataclass(frozen=True)
class DefaultCredentials:
    """Anonymous access, or whatever credential helper git is configured with."""


@dataclass(frozen=True)
class UsernamePasswordCredentials:
    username: str
    password: str = field(default="", repr=False)

    def authorization_header(self) -> str:
        token = base64.b64encode(f"{self.username}:{self.password}".encode()).decode("ascii")
        return f"Authorization: Basic {token}"


Credentials = DefaultCredentials | UsernamePasswordCredentials

CredentialsCallback = Callable[[str, str | None, CredentialTypes], Credentials]

SUPPORTED_TYPES = CredentialTypes.DEFAULT | CredentialTypes.USERNAME_PASSWORD


def username_from_url(url: str) -> str | None:
    """User name embedded in a URL such as ``https://bob@host/repo.git``."""
    try:
        return urlsplit(url).username
    except ValueError:
        return None


def make_credentials_callback(handle: RepositoryHandle) -> CredentialsCallback:
    """Build the credential callback for a repository handle.

    The callback reads the handle (immutable) and nothing else.

    Args:
        handle: Repository whose user name/password should be offered

    Returns:
        Callback returning default credentials when no user name is
        configured, otherwise the configured user name/password pair
    """

    def credentials_handler(url: str, url_username: str | None, allowed_types: CredentialTypes) -> Credentials:
        if not handle.user_name:
            log.debug("git_credentials_default", url_username=url_username)
            return DefaultCredentials()

        log.debug("git_credentials_user", user=handle.user_name)
        return UsernamePasswordCredentials(username=handle.user_name, password=handle.password or "")

    return credentials_handler


def credential_config(credentials: Credentials) -> dict[str, str]:
    """Git configuration entries carrying the credentials for one invocation."""
    if isinstance(credentials, UsernamePasswordCredentials):
        return {EXTRA_HEADER_KEY: credentials.authorization_header()}
    return {}


def credential_environment(credentials: Credentials) -> dict[str, str]:
    """Express credential_config() through GIT_CONFIG_COUNT/KEY/VALUE variables.

    Requires git 2.31 or later. Nothing is written to any config file.
    """
    config = credential_config(credentials)
    env: dict[str, str] = {}
    if not config:
        return env

    env["GIT_CONFIG_COUNT"] = str(len(config))
    for index, (key, value) in enumerate(config.items()):
        env[f"GIT_CONFIG_KEY_{index}"] = key
        env[f"GIT_CONFIG_VALUE_{index}"] = value
    return env
