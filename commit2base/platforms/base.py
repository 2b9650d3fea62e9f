from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from commit2base.config import LOGGER_COMMIT2BASE, get_logger
from commit2base.git.utils import format_timestamp

logger = get_logger(LOGGER_COMMIT2BASE)

DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_MAX_PAGES = 50
PER_PAGE = 100


class PlatformError(Exception):
    """A provider call failed: network, authentication or an error status."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"{provider}: {message}")


@dataclass
class RemoteRepository:
    external_id: str
    name: str
    full_name: str
    default_branch: str = "main"
    url: str | None = None


@dataclass
class RemoteBranch:
    name: str
    sha: str | None = None


@dataclass
class RemoteCommit:
    sha: str
    message: str
    author_name: str | None
    author_email: str | None
    committed_at: datetime | None
    is_merge_commit: bool = False


@dataclass
class RemoteFileChange:
    filename: str
    status: str = "modified"
    lines_added: int = 0
    lines_removed: int = 0
    # True when the counts are an approximation rather than provider-reported numbers
    estimated: bool = False


@dataclass
class CommitDetails:
    sha: str
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    files: list[RemoteFileChange] = field(default_factory=list)

    @property
    def estimated(self) -> bool:
        return any(f.estimated for f in self.files)


@dataclass
class ConnectionResult:
    success: bool
    message: str

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


class PlatformClient(ABC):
    """Uniform read-only view over one hosting provider's REST API.

    Every call either returns normalized records or raises PlatformError with the
    provider's message attached. No call is retried here.
    """

    provider = "platform"

    def __init__(
        self,
        url: str,
        token: str,
        username: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        max_pages: int = DEFAULT_MAX_PAGES,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.original_url = url
        self.token = token
        self.username = username
        self.connect_timeout = connect_timeout
        self.max_pages = max_pages
        self.client = httpx.AsyncClient(
            base_url=self.api_base_url(url),
            headers=self.auth_headers(),
            timeout=timeout,
            transport=transport,
        )

    @abstractmethod
    def api_base_url(self, url: str) -> str: ...

    @abstractmethod
    def auth_headers(self) -> dict[str, str]: ...

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        await self.client.aclose()

    async def _request(self, path: str, params=None, headers=None, timeout=None) -> httpx.Response:
        kwargs = {"params": params, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            response = await self.client.get(path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PlatformError(
                self.provider,
                _error_message(e.response),
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise PlatformError(self.provider, str(e) or type(e).__name__) from e
        return response

    async def _get_json(self, path: str, params=None, headers=None, timeout=None):
        response = await self._request(path, params=params, headers=headers, timeout=timeout)
        try:
            return response.json()
        except ValueError as e:
            raise PlatformError(
                self.provider, f"Unexpected non-JSON response from {path}"
            ) from e

    async def _get_text(self, path: str, params=None, headers=None) -> str:
        response = await self._request(path, params=params, headers=headers)
        return response.text

    async def _paginate(self, path: str, params: dict | None = None, max_pages: int | None = None):
        """Collect page/per_page listings until a short page or the page limit."""
        items = []
        page = 1
        limit = max_pages or self.max_pages
        while page <= limit:
            query = dict(params or {})
            query.update({"page": page, "per_page": PER_PAGE})
            data = await self._get_json(path, params=query)
            if not isinstance(data, list) or not data:
                break
            items.extend(data)
            if len(data) < PER_PAGE:
                break
            page += 1
        return items

    @abstractmethod
    async def test_connection(self) -> ConnectionResult: ...

    @abstractmethod
    async def list_repositories(self) -> list[RemoteRepository]: ...

    @abstractmethod
    async def list_branches(self, repo_full_name: str) -> list[RemoteBranch]: ...

    @abstractmethod
    async def list_commits(
        self,
        repo_full_name: str,
        branch: str,
        from_date: datetime | None,
        to_date: datetime | None,
    ) -> list[RemoteCommit]: ...

    @abstractmethod
    async def get_commit_details(self, repo_full_name: str, sha: str) -> CommitDetails: ...

    @abstractmethod
    async def get_commit_diff(self, repo_full_name: str, sha: str) -> str: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return f"{body[key]} (HTTP {response.status_code})"
    return f"HTTP {response.status_code} {response.reason_phrase}".strip()


def date_param(value: datetime | None) -> str | None:
    return format_timestamp(value) if value is not None else None


def safe_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
