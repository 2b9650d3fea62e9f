import re
from urllib.parse import urlparse

from commit2base.config import LOGGER_COMMIT2BASE, get_logger
from commit2base.git.utils import parse_timestamp
from commit2base.platforms.base import (
    CommitDetails,
    ConnectionResult,
    PlatformClient,
    PlatformError,
    RemoteBranch,
    RemoteCommit,
    RemoteFileChange,
    RemoteRepository,
    date_param,
    safe_int,
)

logger = get_logger(LOGGER_COMMIT2BASE)

GITHUB_API = "https://api.github.com"

STATUS_MAP = {
    "added": "added",
    "removed": "deleted",
    "modified": "modified",
    "renamed": "renamed",
}


class GitHubClient(PlatformClient):
    """GitHub REST API v3, github.com or GitHub Enterprise"""

    provider = "github"

    def __init__(self, url: str, token: str, username: str | None = None, **kwargs):
        self.org = self.extract_org(url)
        super().__init__(url, token, username, **kwargs)

    @staticmethod
    def extract_org(url: str) -> str:
        match = re.search(r"github\.com/([^/]+)", url, re.IGNORECASE)
        if match:
            return match.group(1)
        if "://" in url:
            segments = [s for s in urlparse(url).path.split("/") if s]
            if segments:
                return segments[0]
        return re.sub(r"^https?://", "", url, flags=re.IGNORECASE).replace("/", "")

    def api_base_url(self, url: str) -> str:
        if "://" not in url:
            return GITHUB_API
        host = urlparse(url).netloc
        if not host or host.lower() in ("github.com", "www.github.com", "api.github.com"):
            return GITHUB_API
        return f"{urlparse(url).scheme}://{host}/api/v3"

    def auth_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }

    async def _org_or_user(self, suffix: str = "", params: dict | None = None, paginate: bool = False, timeout=None):
        """Call /orgs/{org}{suffix}, falling back to /users/{org}{suffix} on 404"""
        for kind in ("orgs", "users"):
            path = f"/{kind}/{self.org}{suffix}"
            try:
                if paginate:
                    return await self._paginate(path, params=params)
                return await self._get_json(path, params=params, timeout=timeout)
            except PlatformError as e:
                if e.status_code != 404 or kind == "users":
                    raise
                logger.debug(f"GitHub: {self.org} is not an organization, trying user")

    async def test_connection(self) -> ConnectionResult:
        try:
            data = await self._org_or_user(timeout=self.connect_timeout)
            login = data.get("login") if isinstance(data, dict) else None
            return ConnectionResult(True, f"Connected successfully to {login or self.org}.")
        except PlatformError as e:
            return ConnectionResult(False, e.message)

    async def list_repositories(self) -> list[RemoteRepository]:
        items = await self._org_or_user("/repos", params={"sort": "updated"}, paginate=True)
        return [
            RemoteRepository(
                external_id=str(repo["id"]),
                name=repo["name"],
                full_name=repo["full_name"],
                default_branch=repo.get("default_branch") or "main",
                url=repo.get("html_url"),
            )
            for repo in items
        ]

    async def list_branches(self, repo_full_name: str) -> list[RemoteBranch]:
        items = await self._paginate(f"/repos/{repo_full_name}/branches")
        return [
            RemoteBranch(name=branch["name"], sha=(branch.get("commit") or {}).get("sha"))
            for branch in items
        ]

    async def list_commits(self, repo_full_name, branch, from_date, to_date) -> list[RemoteCommit]:
        params = {"sha": branch}
        if from_date is not None:
            params["since"] = date_param(from_date)
        if to_date is not None:
            params["until"] = date_param(to_date)

        items = await self._paginate(f"/repos/{repo_full_name}/commits", params=params)
        commits = []
        for item in items:
            commit = item.get("commit") or {}
            author = commit.get("author") or {}
            commits.append(
                RemoteCommit(
                    sha=item["sha"],
                    message=commit.get("message") or "",
                    author_name=author.get("name"),
                    author_email=author.get("email"),
                    committed_at=parse_timestamp(author.get("date")),
                    is_merge_commit=len(item.get("parents") or []) > 1,
                )
            )
        return commits

    async def get_commit_details(self, repo_full_name: str, sha: str) -> CommitDetails:
        data = await self._get_json(f"/repos/{repo_full_name}/commits/{sha}")
        files = [
            RemoteFileChange(
                filename=f.get("filename", ""),
                status=STATUS_MAP.get(f.get("status"), "modified"),
                lines_added=safe_int(f.get("additions")),
                lines_removed=safe_int(f.get("deletions")),
            )
            for f in data.get("files") or []
        ]
        stats = data.get("stats") or {}
        # GitHub caps the file list, the aggregate stats stay exact
        return CommitDetails(
            sha=sha,
            files_changed=len(files),
            lines_added=safe_int(stats.get("additions")),
            lines_removed=safe_int(stats.get("deletions")),
            files=files,
        )

    async def get_commit_diff(self, repo_full_name: str, sha: str) -> str:
        return await self._get_text(
            f"/repos/{repo_full_name}/commits/{sha}",
            headers={"Accept": "application/vnd.github.v3.diff"},
        )


