"""Azure DevOps client.

Azure DevOps exposes no per-file line statistics for a commit, so commit details are
assembled from the change list plus item content:

- the first ``MAX_FILES_WITH_CONTENT`` non-binary files get line counts derived from
  their content at the commit and at its first parent. Added and deleted files are
  counted exactly; edits are approximated from the difference in line counts.
- every other file gets a fixed estimate.

Every approximated count is marked ``estimated`` on the returned file change.
"""

import base64
import re
from urllib.parse import quote

from commit2base.config import LOGGER_COMMIT2BASE, get_logger
from commit2base.git.utils import is_binary_file, parse_timestamp
from commit2base.platforms.base import (
    PER_PAGE,
    CommitDetails,
    ConnectionResult,
    PlatformClient,
    PlatformError,
    RemoteBranch,
    RemoteCommit,
    RemoteFileChange,
    RemoteRepository,
    date_param,
)

logger = get_logger(LOGGER_COMMIT2BASE)

API_VERSION = "6.0"
MAX_FILES_WITH_CONTENT = 20

# Fixed estimates, (added, removed)
ESTIMATE_UNPROCESSED_ADD = (20, 0)
ESTIMATE_UNPROCESSED_DELETE = (0, 20)
ESTIMATE_UNPROCESSED_EDIT = (5, 3)
ESTIMATE_FAILED_ADD = (50, 0)
ESTIMATE_FAILED_DELETE = (0, 50)
ESTIMATE_FAILED_EDIT = (15, 10)
ESTIMATE_EDIT_WITHOUT_PARENT = (10, 5)
EDIT_CHURN = 5

NO_CHANGES_PLACEHOLDER = "No changes found in diff (Azure DevOps diff API limitation)."

CHANGE_TYPE_STATUS = {
    "add": "added",
    "edit": "modified",
    "delete": "deleted",
    "rename": "renamed",
}


def normalize_url(url: str) -> str:
    """Map the URL shapes users paste into https://dev.azure.com/{org}"""
    url = url.strip().rstrip("/")

    # https://{user}@dev.azure.com/{org}/... from the clone dialog
    match = re.match(r"https?://[^@/]+@dev\.azure\.com/([^/]+)", url, re.IGNORECASE)
    if match:
        return f"https://dev.azure.com/{match.group(1)}"

    match = re.match(r"https?://([^./]+)\.visualstudio\.com", url, re.IGNORECASE)
    if match:
        return f"https://dev.azure.com/{match.group(1)}"

    if "dev.azure.com" in url.lower():
        match = re.search(r"dev\.azure\.com/([^/]+)", url, re.IGNORECASE)
        if match:
            return f"https://dev.azure.com/{match.group(1)}"
        return url

    return f"https://dev.azure.com/{url}"


def change_kind(change_type) -> str:
    """Reduce Azure's change type (string flags or numeric enum) to add, delete, edit or other"""
    if isinstance(change_type, int):
        if change_type & 1:
            return "add"
        if change_type & 16:
            return "delete"
        if change_type & 2:
            return "edit"
        return "other"
    text = str(change_type or "").lower()
    for kind in ("add", "delete", "edit"):
        if kind in text:
            return kind
    return "other"


def change_status(change_type) -> str:
    kind = change_kind(change_type)
    if kind == "other" and "rename" in str(change_type or "").lower():
        return "renamed"
    return CHANGE_TYPE_STATUS.get(kind, "modified")


def count_lines(content: str) -> int:
    return len(content.split("\n"))


class AzureDevOpsClient(PlatformClient):
    provider = "azure_devops"

    def api_base_url(self, url: str) -> str:
        return normalize_url(url)

    def auth_headers(self) -> dict[str, str]:
        credentials = f"{self.username}:{self.token}" if self.username else f":{self.token}"
        encoded = base64.b64encode(credentials.encode("utf-8")).decode("ascii")
        return {"Authorization": f"Basic {encoded}"}

    @property
    def organization(self) -> str | None:
        match = re.search(r"dev\.azure\.com/([^/]+)", str(self.client.base_url), re.IGNORECASE)
        return match.group(1) if match else None

    @staticmethod
    def _split(repo_full_name: str) -> tuple[str, str]:
        project, _, repo_name = repo_full_name.partition("/")
        return quote(project), quote(repo_name)

    def _repo_path(self, repo_full_name: str) -> str:
        project, repo_name = self._split(repo_full_name)
        return f"/{project}/_apis/git/repositories/{repo_name}"

    async def test_connection(self) -> ConnectionResult:
        try:
            data = await self._get_json(
                "/_apis/projects",
                params={"api-version": API_VERSION},
                timeout=self.connect_timeout,
            )
            return ConnectionResult(True, f"Connected successfully. Found {data.get('count', 0)} projects.")
        except PlatformError as e:
            return ConnectionResult(False, e.message)

    async def list_repositories(self) -> list[RemoteRepository]:
        data = await self._get_json("/_apis/projects", params={"api-version": API_VERSION})
        repos = []
        for project in data.get("value") or []:
            project_name = project.get("name")
            try:
                listing = await self._get_json(
                    f"/{quote(project_name)}/_apis/git/repositories",
                    params={"api-version": API_VERSION},
                )
            except PlatformError as e:
                logger.warning(f"Azure DevOps: failed to fetch repos for project {project_name}: {e}")
                continue

            for repo in listing.get("value") or []:
                default_branch = (repo.get("defaultBranch") or "").replace("refs/heads/", "")
                repos.append(
                    RemoteRepository(
                        external_id=str(repo["id"]),
                        name=repo["name"],
                        full_name=f"{project_name}/{repo['name']}",
                        default_branch=default_branch or "main",
                        url=repo.get("webUrl"),
                    )
                )
        return repos

    async def list_branches(self, repo_full_name: str) -> list[RemoteBranch]:
        data = await self._get_json(
            f"{self._repo_path(repo_full_name)}/refs",
            params={"filter": "heads/", "api-version": API_VERSION},
        )
        return [
            RemoteBranch(name=ref["name"].replace("refs/heads/", ""), sha=ref.get("objectId"))
            for ref in data.get("value") or []
        ]

    async def list_commits(self, repo_full_name, branch, from_date, to_date) -> list[RemoteCommit]:
        params = {
            "searchCriteria.itemVersion.version": branch,
            "searchCriteria.itemVersion.versionType": "branch",
            "api-version": API_VERSION,
        }
        if from_date is not None:
            params["searchCriteria.fromDate"] = date_param(from_date)
        if to_date is not None:
            params["searchCriteria.toDate"] = date_param(to_date)

        commits = []
        for page in range(self.max_pages):
            query = dict(params)
            query.update({"searchCriteria.$top": PER_PAGE, "searchCriteria.$skip": page * PER_PAGE})
            data = await self._get_json(f"{self._repo_path(repo_full_name)}/commits", params=query)
            values = data.get("value") or []
            for commit in values:
                author = commit.get("author") or {}
                commits.append(
                    RemoteCommit(
                        sha=commit["commitId"],
                        message=commit.get("comment") or "",
                        author_name=author.get("name"),
                        author_email=author.get("email"),
                        committed_at=parse_timestamp(author.get("date")),
                        is_merge_commit=len(commit.get("parents") or []) > 1,
                    )
                )
            if len(values) < PER_PAGE:
                break
        return commits

    async def _first_parent(self, repo_full_name: str, sha: str) -> str | None:
        commit = await self._get_json(
            f"{self._repo_path(repo_full_name)}/commits/{sha}",
            params={"api-version": API_VERSION},
        )
        parents = commit.get("parents") or []
        return parents[0] if parents else None

    async def _item_content(self, repo_full_name: str, path: str, version: str) -> str:
        return await self._get_text(
            f"{self._repo_path(repo_full_name)}/items",
            params={
                "path": f"/{path}",
                "versionDescriptor.version": version,
                "versionDescriptor.versionType": "commit",
                "$format": "text",
                "api-version": API_VERSION,
            },
        )

    async def _file_change_stats(self, repo_full_name, path, sha, parent_sha, kind):
        """(added, removed, estimated) for one processed file"""
        if kind == "add":
            try:
                content = await self._item_content(repo_full_name, path, sha)
                return count_lines(content), 0, False
            except PlatformError:
                return (*ESTIMATE_FAILED_ADD, True)

        if kind == "delete":
            if not parent_sha:
                return (*ESTIMATE_FAILED_DELETE, True)
            try:
                content = await self._item_content(repo_full_name, path, parent_sha)
                return 0, count_lines(content), False
            except PlatformError:
                return (*ESTIMATE_FAILED_DELETE, True)

        if kind == "edit":
            if not parent_sha:
                return (*ESTIMATE_EDIT_WITHOUT_PARENT, True)
            try:
                new_lines = count_lines(await self._item_content(repo_full_name, path, sha))
                old_lines = count_lines(await self._item_content(repo_full_name, path, parent_sha))
            except PlatformError:
                return (*ESTIMATE_FAILED_EDIT, True)
            # Net change is exact, churn is a guess
            diff = new_lines - old_lines
            if diff > 0:
                return diff + EDIT_CHURN, EDIT_CHURN, True
            if diff < 0:
                return EDIT_CHURN, -diff + EDIT_CHURN, True
            return EDIT_CHURN, EDIT_CHURN, True

        return 0, 0, False

    async def get_commit_details(self, repo_full_name: str, sha: str) -> CommitDetails:
        parent_sha = await self._first_parent(repo_full_name, sha)
        data = await self._get_json(
            f"{self._repo_path(repo_full_name)}/commits/{sha}/changes",
            params={"api-version": API_VERSION},
        )

        changes = [
            change
            for change in data.get("changes") or []
            if not (change.get("item") or {}).get("isFolder")
            and (change.get("item") or {}).get("gitObjectType", "blob") == "blob"
        ]

        files = []
        for index, change in enumerate(changes):
            filename = ((change.get("item") or {}).get("path") or "").lstrip("/")
            kind = change_kind(change.get("changeType"))

            if index < MAX_FILES_WITH_CONTENT and not is_binary_file(filename):
                added, removed, estimated = await self._file_change_stats(
                    repo_full_name, filename, sha, parent_sha, kind
                )
            elif kind == "add":
                added, removed, estimated = (*ESTIMATE_UNPROCESSED_ADD, True)
            elif kind == "delete":
                added, removed, estimated = (*ESTIMATE_UNPROCESSED_DELETE, True)
            else:
                added, removed, estimated = (*ESTIMATE_UNPROCESSED_EDIT, True)

            files.append(
                RemoteFileChange(
                    filename=filename,
                    status=change_status(change.get("changeType")),
                    lines_added=added,
                    lines_removed=removed,
                    estimated=estimated,
                )
            )

        return CommitDetails(
            sha=sha,
            files_changed=len(files),
            lines_added=sum(f.lines_added for f in files),
            lines_removed=sum(f.lines_removed for f in files),
            files=files,
        )

    async def get_commit_diff(self, repo_full_name: str, sha: str) -> str:
        """Header-only diff: Azure DevOps has no unified diff endpoint."""
        parent_sha = await self._first_parent(repo_full_name, sha)
        if not parent_sha:
            # Initial commit
            return ""

        data = await self._get_json(
            f"{self._repo_path(repo_full_name)}/diffs/commits",
            params={
                "baseVersion": parent_sha,
                "targetVersion": sha,
                "api-version": API_VERSION,
            },
        )

        lines = []
        for change in data.get("changes") or []:
            path = (change.get("item") or {}).get("path")
            if path:
                lines.append(f"diff --git a{path} b{path}")
                lines.append(f"--- a{path}")
                lines.append(f"+++ b{path}")

        if not lines:
            return NO_CHANGES_PLACEHOLDER
        return "\n".join(lines) + "\n"
