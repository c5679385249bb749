"""Tests for repo_converge.git.credentials module."""

import base64

from repo_converge.git.credentials import (
    EXTRA_HEADER_KEY,
    SUPPORTED_TYPES,
    DefaultCredentials,
    UsernamePasswordCredentials,
    credential_config,
    credential_environment,
    make_credentials_callback,
    username_from_url,
)
from repo_converge.models.domain import RepositoryHandle


class TestCredentialsCallback:
    """Tests for make_credentials_callback."""

    def test_no_user_name_gives_default_credentials(self, tmp_path):
        callback = make_credentials_callback(RepositoryHandle(local_path=tmp_path))

        assert callback("https://example.com/r.git", None, SUPPORTED_TYPES) == DefaultCredentials()

    def test_user_name_gives_user_password(self, tmp_path):
        handle = RepositoryHandle(local_path=tmp_path, user_name="ci", password="s3cret")
        callback = make_credentials_callback(handle)

        credentials = callback("https://example.com/r.git", None, SUPPORTED_TYPES)

        assert credentials == UsernamePasswordCredentials(username="ci", password="s3cret")

    def test_missing_password_is_empty(self, tmp_path):
        handle = RepositoryHandle(local_path=tmp_path, user_name="ci")

        credentials = make_credentials_callback(handle)("https://example.com", None, SUPPORTED_TYPES)

        assert credentials.password == ""

    def test_password_not_in_repr(self, tmp_path):
        handle = RepositoryHandle(local_path=tmp_path, user_name="ci", password="s3cret")

        assert "s3cret" not in repr(handle)
        assert "s3cret" not in repr(UsernamePasswordCredentials("ci", "s3cret"))


class TestCredentialConfig:
    """Tests for credential_config and credential_environment."""

    def test_default_credentials_add_nothing(self):
        assert credential_config(DefaultCredentials()) == {}
        assert credential_environment(DefaultCredentials()) == {}

    def test_basic_authorization_header(self):
        config = credential_config(UsernamePasswordCredentials("ci", "s3cret"))

        token = base64.b64encode(b"ci:s3cret").decode("ascii")
        assert config == {EXTRA_HEADER_KEY: f"Authorization: Basic {token}"}

    def test_environment_variables(self):
        env = credential_environment(UsernamePasswordCredentials("ci", "s3cret"))

        assert env["GIT_CONFIG_COUNT"] == "1"
        assert env["GIT_CONFIG_KEY_0"] == EXTRA_HEADER_KEY
        assert env["GIT_CONFIG_VALUE_0"].startswith("Authorization: Basic ")


class TestUsernameFromUrl:
    """Tests for username_from_url."""

    def test_url_with_user(self):
        assert username_from_url("https://bob@example.com/repo.git") == "bob"

    def test_url_without_user(self):
        assert username_from_url("https://example.com/repo.git") is None

    def test_local_path(self):
        assert username_from_url("/srv/git/repo.git") is None
