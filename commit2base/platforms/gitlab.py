import re
from urllib.parse import quote, urlparse

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

GITLAB_API = "https://gitlab.com/api/v4"


def _encode(path: str) -> str:
    return quote(path, safe="")


def count_diff_lines(diff_text: str | None) -> tuple[int, int]:
    """Added and removed line counts of one file's hunk text"""
    added = removed = 0
    for line in (diff_text or "").split("\n"):
        if line.startswith("+") and not line.startswith("+++"):
            added += 1
        elif line.startswith("-") and not line.startswith("---"):
            removed += 1
    return added, removed


def diff_status(diff: dict) -> str:
    if diff.get("new_file"):
        return "added"
    if diff.get("deleted_file"):
        return "deleted"
    if diff.get("renamed_file"):
        return "renamed"
    return "modified"


class GitLabClient(PlatformClient):
    """GitLab REST API v4, gitlab.com or self-hosted"""

    provider = "gitlab"

    def __init__(self, url: str, token: str, username: str | None = None, **kwargs):
        self.group_path = self.extract_group_path(url)
        super().__init__(url, token, username, **kwargs)

    @staticmethod
    def extract_group_path(url: str) -> str:
        if "://" in url:
            return urlparse(url).path.strip("/")
        match = re.search(r"gitlab\.com/(.+)", url, re.IGNORECASE)
        if match:
            return match.group(1).strip("/")
        return url.strip("/")

    def api_base_url(self, url: str) -> str:
        match = re.match(r"(https?://[^/]+)", url, re.IGNORECASE)
        if match:
            return f"{match.group(1)}/api/v4"
        return GITLAB_API

    def auth_headers(self) -> dict[str, str]:
        return {"PRIVATE-TOKEN": self.token}

    async def test_connection(self) -> ConnectionResult:
        try:
            data = await self._get_json(
                f"/groups/{_encode(self.group_path)}", timeout=self.connect_timeout
            )
            return ConnectionResult(True, f"Connected successfully to {data.get('name') or self.group_path}.")
        except PlatformError as group_error:
            try:
                data = await self._get_json("/user", timeout=self.connect_timeout)
                return ConnectionResult(True, f"Connected successfully as {data.get('username')}.")
            except PlatformError:
                return ConnectionResult(False, group_error.message)

    async def list_repositories(self) -> list[RemoteRepository]:
        ordering = {"order_by": "last_activity_at", "sort": "desc"}
        try:
            items = await self._paginate(
                f"/groups/{_encode(self.group_path)}/projects",
                params={"include_subgroups": "true", **ordering},
            )
        except PlatformError as e:
            if e.status_code != 404:
                raise
            logger.debug(f"GitLab: group {self.group_path} not found, listing owned projects")
            items = await self._paginate("/projects", params={"owned": "true", **ordering})

        return [
            RemoteRepository(
                external_id=str(project["id"]),
                name=project["name"],
                full_name=project["path_with_namespace"],
                default_branch=project.get("default_branch") or "main",
                url=project.get("web_url"),
            )
            for project in items
        ]

    async def list_branches(self, repo_full_name: str) -> list[RemoteBranch]:
        items = await self._paginate(f"/projects/{_encode(repo_full_name)}/repository/branches")
        return [
            RemoteBranch(name=branch["name"], sha=(branch.get("commit") or {}).get("id"))
            for branch in items
        ]

    async def list_commits(self, repo_full_name, branch, from_date, to_date) -> list[RemoteCommit]:
        params = {"ref_name": branch}
        if from_date is not None:
            params["since"] = date_param(from_date)
        if to_date is not None:
            params["until"] = date_param(to_date)

        items = await self._paginate(
            f"/projects/{_encode(repo_full_name)}/repository/commits", params=params
        )
        return [
            RemoteCommit(
                sha=item["id"],
                message=item.get("message") or "",
                author_name=item.get("author_name"),
                author_email=item.get("author_email"),
                committed_at=parse_timestamp(item.get("authored_date")),
                is_merge_commit=len(item.get("parent_ids") or []) > 1,
            )
            for item in items
        ]

    async def _commit_diffs(self, repo_full_name: str, sha: str) -> list[dict]:
        return await self._paginate(
            f"/projects/{_encode(repo_full_name)}/repository/commits/{sha}/diff"
        )

    async def get_commit_details(self, repo_full_name: str, sha: str) -> CommitDetails:
        commit = await self._get_json(f"/projects/{_encode(repo_full_name)}/repository/commits/{sha}")
        files = []
        for diff in await self._commit_diffs(repo_full_name, sha):
            added, removed = count_diff_lines(diff.get("diff"))
            files.append(
                RemoteFileChange(
                    filename=diff.get("new_path") or diff.get("old_path") or "",
                    status=diff_status(diff),
                    lines_added=added,
                    lines_removed=removed,
                )
            )

        stats = commit.get("stats") or {}
        return CommitDetails(
            sha=sha,
            files_changed=len(files),
            lines_added=safe_int(stats.get("additions")) or sum(f.lines_added for f in files),
            lines_removed=safe_int(stats.get("deletions")) or sum(f.lines_removed for f in files),
            files=files,
        )

    async def get_commit_diff(self, repo_full_name: str, sha: str) -> str:
        """Rebuild a git-style unified diff from GitLab's per-file diff entries"""
        parts = []
        for diff in await self._commit_diffs(repo_full_name, sha):
            old_path = diff.get("old_path")
            new_path = diff.get("new_path")
            header = [f"diff --git a/{old_path} b/{new_path}"]
            if diff.get("new_file"):
                header.append("new file mode 100644")
            if diff.get("deleted_file"):
                header.append("deleted file mode 100644")
            if diff.get("renamed_file"):
                header.append(f"rename from {old_path}")
                header.append(f"rename to {new_path}")
            header.append(f"--- a/{old_path}")
            header.append(f"+++ b/{new_path}")
            parts.append("\n".join(header) + "\n" + (diff.get("diff") or ""))
        return "\n".join(parts)
