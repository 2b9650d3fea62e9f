import base64
import json
import unittest
from datetime import datetime

import httpx

from commit2base.config import ConfigurationError
from commit2base.git import parse_diff
from commit2base.platforms import (
    AzureDevOpsClient,
    GitHubClient,
    GitLabClient,
    PlatformError,
    create_client,
)
from commit2base.platforms.azure_devops import NO_CHANGES_PLACEHOLDER, change_kind, change_status, normalize_url


def _json(data, status_code=200):
    return httpx.Response(status_code, content=json.dumps(data), headers={"Content-Type": "application/json"})


class RecordingHandler:
    """MockTransport handler dispatching on the decoded request path"""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, respond in self.routes:
            if request.url.path.endswith(suffix):
                return respond(request)
        return _json({"message": "Not Found"}, 404)


class TestGitHubClient(unittest.IsolatedAsyncioTestCase):

    def _client(self, routes, url="https://github.com/acme"):
        handler = RecordingHandler(routes)
        return GitHubClient(url, "secret", transport=httpx.MockTransport(handler)), handler

    def test_urls(self):
        self.assertEqual(GitHubClient.extract_org("https://github.com/acme/"), "acme")
        self.assertEqual(GitHubClient.extract_org("https://ghe.acme.com/platform"), "platform")
        client = GitHubClient("https://ghe.acme.com/platform", "t")
        self.assertEqual(str(client.client.base_url), "https://ghe.acme.com/api/v3/")
        self.assertEqual(GitHubClient("acme", "t").org, "acme")

    async def test_user_fallback_for_repositories(self):
        repos = [
            {"id": 1, "name": "api", "full_name": "acme/api", "default_branch": "develop", "html_url": "u"},
            {"id": 2, "name": "web", "full_name": "acme/web", "default_branch": None},
        ]
        client, handler = self._client([("/users/acme/repos", lambda r: _json(repos))])
        async with client:
            result = await client.list_repositories()

        self.assertEqual([r.full_name for r in result], ["acme/api", "acme/web"])
        self.assertEqual([r.default_branch for r in result], ["develop", "main"])
        self.assertEqual(result[0].external_id, "1")
        self.assertEqual([r.url.path for r in handler.requests], ["/orgs/acme/repos", "/users/acme/repos"])
        self.assertEqual(handler.requests[0].headers["Authorization"], "Bearer secret")

    async def test_branches_are_paged(self):
        def branches(request):
            page = int(request.url.params["page"])
            count = 100 if page == 1 else 3
            return _json([{"name": f"b{page}-{i}", "commit": {"sha": "x"}} for i in range(count)])

        client, handler = self._client([("/repos/acme/api/branches", branches)])
        async with client:
            result = await client.list_branches("acme/api")

        self.assertEqual(len(result), 103)
        self.assertEqual(len(handler.requests), 2)
        self.assertEqual(handler.requests[0].url.params["per_page"], "100")

    async def test_commits(self):
        items = [
            {
                "sha": "abc",
                "commit": {"message": "Merge branch", "author": {"name": "Ann", "email": "ann@acme.com", "date": "2024-01-02T03:04:05Z"}},
                "parents": [{"sha": "p1"}, {"sha": "p2"}],
            }
        ]
        client, handler = self._client([("/repos/acme/api/commits", lambda r: _json(items))])
        async with client:
            result = await client.list_commits("acme/api", "main", datetime(2024, 1, 1), None)

        self.assertEqual(result[0].committed_at, datetime(2024, 1, 2, 3, 4, 5))
        self.assertTrue(result[0].is_merge_commit)
        params = handler.requests[0].url.params
        self.assertEqual(params["sha"], "main")
        self.assertEqual(params["since"], "2024-01-01T00:00:00Z")
        self.assertNotIn("until", params)

    async def test_details_and_diff(self):
        detail = {
            "stats": {"additions": 12, "deletions": 3},
            "files": [
                {"filename": "a.py", "status": "removed", "additions": 0, "deletions": 3},
                {"filename": "b.py", "status": "added", "additions": 12, "deletions": 0},
            ],
        }

        def commit(request):
            if request.headers["Accept"] == "application/vnd.github.v3.diff":
                return httpx.Response(200, text="diff --git a/a.py b/a.py\n")
            return _json(detail)

        client, _ = self._client([("/repos/acme/api/commits/abc", commit)])
        async with client:
            details = await client.get_commit_details("acme/api", "abc")
            diff = await client.get_commit_diff("acme/api", "abc")

        self.assertEqual((details.files_changed, details.lines_added, details.lines_removed), (2, 12, 3))
        self.assertEqual([f.status for f in details.files], ["deleted", "added"])
        self.assertFalse(details.estimated)
        self.assertEqual(diff, "diff --git a/a.py b/a.py\n")

    async def test_connection(self):
        client, _ = self._client([("/orgs/acme", lambda r: _json({"login": "acme"}))])
        async with client:
            outcome = await client.test_connection()
        self.assertEqual(outcome.to_dict(), {"success": True, "message": "Connected successfully to acme."})

        client, _ = self._client([("/orgs/acme", lambda r: _json({"message": "Bad credentials"}, 401))])
        async with client:
            outcome = await client.test_connection()
        self.assertFalse(outcome.success)
        self.assertEqual(outcome.message, "Bad credentials (HTTP 401)")

    async def test_errors_are_wrapped(self):
        client, _ = self._client([("/branches", lambda r: httpx.Response(500, text="oops"))])
        async with client:
            with self.assertRaises(PlatformError) as ctx:
                await client.list_branches("acme/api")
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.provider, "github")

        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client, _ = self._client([("/branches", unreachable)])
        async with client:
            with self.assertRaises(PlatformError) as ctx:
                await client.list_branches("acme/api")
        self.assertIsNone(ctx.exception.status_code)
        self.assertIn("connection refused", str(ctx.exception))


class TestGitLabClient(unittest.IsolatedAsyncioTestCase):

    DIFFS = [
        {"old_path": "app.py", "new_path": "app.py", "diff": "@@ -1,2 +1,2 @@\n-a = 1\n+a = 2\n b = 3\n"},
        {"old_path": "new.py", "new_path": "new.py", "new_file": True, "diff": "@@ -0,0 +1,2 @@\n+x = 1\n+y = 2\n"},
    ]

    def _client(self, routes, url="https://gitlab.com/acme/backend"):
        handler = RecordingHandler(routes)
        return GitLabClient(url, "secret", transport=httpx.MockTransport(handler)), handler

    def test_urls(self):
        client = GitLabClient("https://git.acme.io/acme/backend", "t")
        self.assertEqual(client.group_path, "acme/backend")
        self.assertEqual(str(client.client.base_url), "https://git.acme.io/api/v4/")
        self.assertEqual(client.client.headers["PRIVATE-TOKEN"], "t")

    async def test_owned_projects_fallback(self):
        projects = [{"id": 9, "name": "api", "path_with_namespace": "ann/api", "web_url": "w"}]
        client, handler = self._client([("/api/v4/projects", lambda r: _json(projects))])
        async with client:
            result = await client.list_repositories()

        self.assertEqual([r.full_name for r in result], ["ann/api"])
        self.assertIn("acme%2Fbackend", handler.requests[0].url.raw_path.decode())
        self.assertEqual(handler.requests[0].url.params["include_subgroups"], "true")
        self.assertEqual(handler.requests[1].url.params["owned"], "true")

    async def test_details_and_diff(self):
        client, _ = self._client(
            [
                ("/commits/abc/diff", lambda r: _json(self.DIFFS)),
                ("/commits/abc", lambda r: _json({"id": "abc", "stats": {}})),
            ]
        )
        async with client:
            details = await client.get_commit_details("acme/api", "abc")
            diff = await client.get_commit_diff("acme/api", "abc")

        self.assertEqual((details.files_changed, details.lines_added, details.lines_removed), (2, 3, 1))
        self.assertEqual([f.status for f in details.files], ["modified", "added"])

        files = parse_diff(diff)
        self.assertEqual([f.path for f in files], ["app.py", "new.py"])
        self.assertEqual(files[1].status, "added")
        self.assertEqual((files[0].lines_added, files[0].lines_removed), (1, 1))

    async def test_connection_falls_back_to_user(self):
        client, _ = self._client([("/api/v4/user", lambda r: _json({"username": "ann"}))])
        async with client:
            outcome = await client.test_connection()
        self.assertEqual(outcome.message, "Connected successfully as ann.")


class TestAzureDevOpsClient(unittest.IsolatedAsyncioTestCase):

    CONTENT = {
        ("a.py", "abc"): "1\n2\n3",
        ("b.py", "abc"): "\n".join(str(i) for i in range(10)),
        ("b.py", "p1"): "\n".join(str(i) for i in range(7)),
        ("c.py", "p1"): "1\n2\n3\n4",
    }

    def _items(self, request):
        key = (request.url.params["path"].lstrip("/"), request.url.params["versionDescriptor.version"])
        if key not in self.CONTENT:
            return _json({"message": "TF401174: item not found"}, 404)
        return httpx.Response(200, text=self.CONTENT[key])

    def _client(self, routes, url="https://dev.azure.com/acme"):
        handler = RecordingHandler(routes)
        return AzureDevOpsClient(url, "pat", transport=httpx.MockTransport(handler)), handler

    def test_helpers(self):
        self.assertEqual(normalize_url("https://ann@dev.azure.com/acme/Proj/_git/api"), "https://dev.azure.com/acme")
        self.assertEqual(normalize_url("https://acme.visualstudio.com/"), "https://dev.azure.com/acme")
        self.assertEqual(normalize_url("acme"), "https://dev.azure.com/acme")
        self.assertEqual(change_kind(1), "add")
        self.assertEqual(change_kind(16), "delete")
        self.assertEqual(change_kind(2), "edit")
        self.assertEqual(change_kind("edit, rename"), "edit")
        self.assertEqual(change_status("rename"), "renamed")

        client = AzureDevOpsClient("https://dev.azure.com/acme", "pat")
        expected = base64.b64encode(b":pat").decode("ascii")
        self.assertEqual(client.client.headers["Authorization"], f"Basic {expected}")
        self.assertEqual(client.organization, "acme")

    async def test_details_estimation(self):
        changes = {
            "changes": [
                {"item": {"path": "/a.py", "gitObjectType": "blob"}, "changeType": "add"},
                {"item": {"path": "/b.py", "gitObjectType": "blob"}, "changeType": "edit"},
                {"item": {"path": "/c.py", "gitObjectType": "blob"}, "changeType": "delete"},
                {"item": {"path": "/src", "isFolder": True, "gitObjectType": "tree"}, "changeType": "add"},
                {"item": {"path": "/logo.png", "gitObjectType": "blob"}, "changeType": "add"},
                {"item": {"path": "/d.py", "gitObjectType": "blob"}, "changeType": "edit"},
            ]
        }
        client, _ = self._client(
            [
                ("/commits/abc/changes", lambda r: _json(changes)),
                ("/commits/abc", lambda r: _json({"parents": ["p1"]})),
                ("/items", self._items),
            ]
        )
        async with client:
            details = await client.get_commit_details("Proj/api", "abc")

        stats = {f.filename: (f.lines_added, f.lines_removed, f.estimated) for f in details.files}
        self.assertEqual(
            stats,
            {
                "a.py": (3, 0, False),
                "b.py": (8, 5, True),
                "c.py": (0, 4, False),
                "logo.png": (20, 0, True),
                "d.py": (15, 10, True),
            },
        )
        self.assertEqual(details.files_changed, 5)
        self.assertEqual((details.lines_added, details.lines_removed), (46, 19))
        self.assertTrue(details.estimated)

    async def test_diff(self):
        client, _ = self._client(
            [
                ("/diffs/commits", lambda r: _json({"changes": []})),
                ("/commits/abc", lambda r: _json({"parents": ["p1"]})),
                ("/commits/first", lambda r: _json({"parents": []})),
            ]
        )
        async with client:
            self.assertEqual(await client.get_commit_diff("Proj/api", "abc"), NO_CHANGES_PLACEHOLDER)
            self.assertEqual(await client.get_commit_diff("Proj/api", "first"), "")

    async def test_repositories_skip_failing_project(self):
        client, _ = self._client(
            [
                ("/Good/_apis/git/repositories", lambda r: _json(
                    {"value": [{"id": "r1", "name": "api", "defaultBranch": "refs/heads/develop"}]}
                )),
                ("/_apis/projects", lambda r: _json({"value": [{"name": "Good"}, {"name": "Broken"}]})),
            ]
        )
        async with client:
            repos = await client.list_repositories()

        self.assertEqual([(r.full_name, r.default_branch) for r in repos], [("Good/api", "develop")])


class TestCreateClient(unittest.TestCase):

    def test_registry(self):
        self.assertIsInstance(create_client("gitlab", "https://gitlab.com/acme", "t"), GitLabClient)
        with self.assertRaises(ConfigurationError):
            create_client("bitbucket", "https://bitbucket.org/acme", "t")


if __name__ == "__main__":
    unittest.main()
