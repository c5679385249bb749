"""Hosting client selection."""

from repo_converge.enums import HostingProviderType
from repo_converge.exceptions import ConfigurationError
from repo_converge.hosting.base import HostingApiClient

DEFAULT_BASE_URLS = {
    HostingProviderType.GITHUB: "https://api.github.com",
    HostingProviderType.GITLAB: "https://gitlab.com",
}


def create_hosting_client(
    provider_type: HostingProviderType | str,
    api_token: str,
    base_url: str | None = None,
) -> HostingApiClient:
    """Create a hosting API client for the given provider.

    Args:
        provider_type: "github" or "gitlab"
        api_token: Token sent with every API call
        base_url: API base URL (GitHub) or server URL (GitLab). Defaults to
            the public service.

    Returns:
        An unconnected HostingApiClient; use it as an async context manager

    Raises:
        ConfigurationError: If the provider type is not recognized or no
            token is given
    """
    try:
        provider = HostingProviderType(str(provider_type).lower())
    except ValueError as e:
        supported = ", ".join(f"'{p.value}'" for p in HostingProviderType)
        raise ConfigurationError(f"Unknown hosting provider: {provider_type}. Supported providers: {supported}") from e

    if not api_token:
        raise ConfigurationError(f"An API token is required to use the {provider} API")

    url = base_url or DEFAULT_BASE_URLS[provider]

    if provider == HostingProviderType.GITHUB:
        from repo_converge.hosting.github_api import GitHubApiClient

        return GitHubApiClient(token=api_token, base_url=url)

    from repo_converge.hosting.gitlab_api import GitLabApiClient

    return GitLabApiClient(base_url=url, token=api_token)
