from commit2base.config import ConfigurationError
from commit2base.platforms.base import (
    CommitDetails,
    ConnectionResult,
    PlatformClient,
    PlatformError,
    RemoteBranch,
    RemoteCommit,
    RemoteFileChange,
    RemoteRepository,
)
from commit2base.platforms.azure_devops import AzureDevOpsClient
from commit2base.platforms.github import GitHubClient
from commit2base.platforms.gitlab import GitLabClient

# Platform type -> client class, resolved once when a platform is configured
CLIENT_REGISTRY: dict[str, type[PlatformClient]] = {
    "azure_devops": AzureDevOpsClient,
    "github": GitHubClient,
    "gitlab": GitLabClient,
}


def create_client(platform_type: str, url: str, token: str, username: str | None = None, **kwargs) -> PlatformClient:
    """Build the client for a platform type

    Raises:
        ConfigurationError: for an unknown platform type
    """
    client_class = CLIENT_REGISTRY.get(platform_type)
    if client_class is None:
        raise ConfigurationError(f"Unknown platform type: {platform_type}")
    return client_class(url, token, username, **kwargs)


def client_for_platform(platform, **kwargs) -> PlatformClient:
    """Build the client for a stored Platform row"""
    return create_client(platform.type, platform.url, platform.token, platform.username, **kwargs)


__all__ = [
    "CLIENT_REGISTRY",
    "create_client",
    "client_for_platform",
    "AzureDevOpsClient",
    "GitHubClient",
    "GitLabClient",
    "PlatformClient",
    "PlatformError",
    "CommitDetails",
    "ConnectionResult",
    "RemoteBranch",
    "RemoteCommit",
    "RemoteFileChange",
    "RemoteRepository",
]
