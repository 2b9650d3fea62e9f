import asyncio
import unittest
from datetime import datetime

from sqlalchemy import func, select

from commit2base.analyzers import load_and_register_rules
from commit2base.config import ConfigurationError
from commit2base.database import Commit, CommitFlag, Database, Developer, Repository, SyncLogEntry
from commit2base.database import operation as ops
from commit2base.platforms import (
    CommitDetails,
    PlatformError,
    RemoteBranch,
    RemoteCommit,
    RemoteFileChange,
    RemoteRepository,
)
from commit2base.sync import SyncService

FROM = datetime(2024, 1, 1)
TO = datetime(2024, 1, 10, 23, 59, 59)


def _remote(sha, message, committed_at=datetime(2024, 1, 5, 9, 30), email="ann@acme.com"):
    return RemoteCommit(sha, message, "Ann Lee", email, committed_at)


def _details(sha, added, removed, filenames):
    per_file_added, per_file_removed = added // len(filenames), removed // len(filenames)
    files = [RemoteFileChange(name, "modified", per_file_added, per_file_removed) for name in filenames]
    return CommitDetails(sha, len(files), per_file_added * len(files), per_file_removed * len(files), files)


class FakeClient:
    """In-memory stand-in for a provider client"""

    def __init__(self):
        self.repositories = [
            RemoteRepository("1", "api", "acme/api", "main"),
            RemoteRepository("2", "web", "acme/web", "main"),
        ]
        self.branches = {"acme/api": [RemoteBranch("main", "b"), RemoteBranch("dev", "a")]}
        self.commits = {}
        self.details = {}
        self.diffs = {}
        self.failing_details = set()
        self.failing_branches = set()
        self.list_calls = []
        self.closed = False

    async def list_repositories(self):
        return self.repositories

    async def list_branches(self, repo_full_name):
        if repo_full_name not in self.branches:
            raise PlatformError("fake", "Not Found", 404)
        return self.branches[repo_full_name]

    async def list_commits(self, repo_full_name, branch, since=None, until=None):
        self.list_calls.append((repo_full_name, branch, since, until))
        if branch in self.failing_branches:
            raise PlatformError("fake", "Internal Server Error", 500)
        return list(self.commits.get((repo_full_name, branch), []))

    async def get_commit_details(self, repo_full_name, sha):
        if sha in self.failing_details:
            raise PlatformError("fake", "timeout")
        return self.details[sha]

    async def get_commit_diff(self, repo_full_name, sha):
        return self.diffs.get(sha, "")

    async def close(self):
        self.closed = True


class SyncTestCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.db = Database.in_memory()
        self.client = FakeClient()
        with self.db.session_scope() as session:
            ops.upsert_platform(
                session, {"type": "github", "name": "gh", "url": "https://github.com/acme", "token": "t"}
            )
        self.service = SyncService(self.db, client_factory=lambda platform: self.client)

    def tearDown(self):
        self.db.close()

    async def _select_api(self):
        await self.service.sync_repositories()
        with self.db.session_scope() as session:
            ops.set_repository_selected(session, "acme/api", True)

    def _flags(self, sha):
        with self.db.session_scope() as session:
            return sorted(
                session.scalars(
                    select(CommitFlag.flag_type).join(Commit).where(Commit.sha == sha)
                )
            )

    def _sync_logs(self):
        with self.db.session_scope() as session:
            return [
                (entry.branch_id, entry.from_date, entry.to_date, entry.status, entry.error_message)
                for entry in session.scalars(select(SyncLogEntry).order_by(SyncLogEntry.id))
            ]


class TestSyncRepositories(SyncTestCase):

    async def test_repositories_upserted(self):
        result = await self.service.sync_repositories()
        self.assertEqual(result.to_dict(), {"success": 2, "failed": 0, "total": 2, "errors": []})
        self.assertTrue(self.client.closed)

        self.client.repositories[0] = RemoteRepository("1", "api", "acme/api-renamed", "main")
        result = await self.service.sync_repositories()
        self.assertEqual(result.success, 2)
        with self.db.session_scope() as session:
            names = sorted(r.full_name for r in session.scalars(select(Repository)))
        self.assertEqual(names, ["acme/api-renamed", "acme/web"])

    async def test_platform_failure_is_recorded(self):
        async def broken():
            raise PlatformError("github", "Bad credentials", 401)

        self.client.list_repositories = broken
        result = await self.service.sync_repositories()
        self.assertEqual(result.total, 0)
        self.assertEqual(result.errors, ["Platform gh: github: Bad credentials"])

    async def test_unknown_platform_type_is_fatal(self):
        with self.db.session_scope() as session:
            ops.upsert_platform(
                session,
                {"type": "github", "name": "gh", "url": "https://github.com/acme", "token": "t", "enabled": False},
            )
            ops.upsert_platform(session, {"type": "svn", "name": "svn", "url": "https://svn", "token": "t"})
        service = SyncService(self.db)

        with self.assertRaises(ConfigurationError):
            await service.sync_repositories()

    async def test_branches(self):
        await self._select_api()
        with self.db.session_scope() as session:
            ops.set_repository_selected(session, "acme/web", True)

        events = []
        result = await self.service.sync_branches(on_progress=events.append)
        self.assertEqual(result.success, 2)
        self.assertEqual(result.failed, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual([e["type"] for e in events], ["repository", "repository"])

        with self.db.session_scope() as session:
            api = session.scalars(select(Repository).where(Repository.full_name == "acme/api")).one()
            self.assertEqual([b.name for b in ops.get_branches(session, api.id)], ["main", "dev"])
            self.assertIsNotNone(api.last_synced_at)


class TestSyncCommits(SyncTestCase):

    def setUp(self):
        super().setUp()
        vague = _remote("c1", "fix")
        large = _remote("c2", "Refactor billing module", datetime(2024, 1, 6, 15, 0))
        self.client.commits[("acme/api", "main")] = [vague, large]
        self.client.details["c1"] = _details("c1", 2, 1, ["src/app.py"])
        self.client.details["c2"] = _details(
            "c2", 400, 200, [f"billing/module_{i}.py" for i in range(25)]
        )

    async def test_end_to_end(self):
        await self._select_api()

        result = await self.service.sync_commits(FROM, TO)
        self.assertEqual(
            result.to_dict(), {"success": 2, "failed": 0, "total": 2, "skipped": 0, "errors": []}
        )
        self.assertEqual(self._flags("c1"), ["small_vague_commit"])
        self.assertEqual(self._flags("c2"), ["large_commit"])

        with self.db.session_scope() as session:
            large = session.scalars(select(Commit).where(Commit.sha == "c2")).one()
            self.assertEqual(large.lines_added + large.lines_removed, 600)
            self.assertEqual(large.files_changed, 25)
            self.assertEqual(len(large.files), 25)
            self.assertIsNotNone(large.developer_id)
            self.assertEqual(session.scalar(select(func.count(Developer.id))), 1)

        # Default branch was created because no branches were synced
        self.assertEqual([call[1] for call in self.client.list_calls], ["main"])
        logs = self._sync_logs()
        self.assertEqual(len(logs), 1)
        self.assertEqual(logs[0][1:4], (FROM, TO, "success"))

        again = await self.service.sync_commits(FROM, TO)
        self.assertEqual(again.skipped, 2)
        self.assertEqual(again.success, 0)
        self.assertEqual(again.total, 0)

    async def test_incremental_resume(self):
        await self._select_api()
        await self.service.sync_commits(FROM, TO)

        later = datetime(2024, 1, 20)
        await self.service.sync_commits(datetime(2024, 1, 5), later)
        self.assertEqual(self.client.list_calls[-1][2:], (TO, later))

        await self.service.sync_commits(None, later)
        self.assertEqual(self.client.list_calls[-1][2], later)

        await self.service.sync_commits(datetime(2024, 1, 5), later, force=True)
        self.assertEqual(self.client.list_calls[-1][2], datetime(2024, 1, 5))

        # A window that starts after the last sync is used as given
        await self.service.sync_commits(datetime(2024, 2, 1), datetime(2024, 2, 5))
        self.assertEqual(self.client.list_calls[-1][2], datetime(2024, 2, 1))

    async def test_repair_incomplete_details(self):
        await self._select_api()
        self.client.failing_details.add("c1")

        first = await self.service.sync_commits(FROM, TO)
        self.assertEqual(first.success, 2)
        with self.db.session_scope() as session:
            c1 = session.scalars(select(Commit).where(Commit.sha == "c1")).one()
            self.assertFalse(c1.detail_complete)
            self.assertEqual(c1.lines_added, 0)

        self.client.failing_details.clear()
        second = await self.service.sync_commits(FROM, TO, force=False)
        self.assertEqual(second.success, 1)
        self.assertEqual(second.skipped, 1)
        with self.db.session_scope() as session:
            c1 = session.scalars(select(Commit).where(Commit.sha == "c1")).one()
            self.assertTrue(c1.detail_complete)
            self.assertEqual(c1.lines_added, 2)
            self.assertEqual(session.scalar(select(func.count(Commit.id))), 2)

    async def test_force_reprocesses_existing(self):
        await self._select_api()
        await self.service.sync_commits(FROM, TO)

        result = await self.service.sync_commits(FROM, TO, force=True)
        self.assertEqual(
            result.to_dict(), {"success": 2, "failed": 0, "total": 2, "skipped": 0, "errors": []}
        )
        with self.db.session_scope() as session:
            self.assertEqual(session.scalar(select(func.count(Commit.id))), 2)

    async def test_repair_missing_file_lines(self):
        await self._select_api()
        self.client.details["c1"] = CommitDetails("c1", 1, 2, 1)
        await self.service.sync_commits(FROM, TO)

        self.client.details["c1"] = _details("c1", 2, 1, ["src/app.py"])
        second = await self.service.sync_commits(FROM, TO)
        self.assertEqual((second.success, second.skipped), (1, 1))
        with self.db.session_scope() as session:
            c1 = session.scalars(select(Commit).where(Commit.sha == "c1")).one()
            self.assertEqual([(f.filename, f.lines_added) for f in c1.files], [("src/app.py", 2)])

        third = await self.service.sync_commits(FROM, TO)
        self.assertEqual((third.success, third.skipped), (0, 2))

    async def test_failures_are_isolated(self):
        await self._select_api()
        await self.service.sync_branches()
        self.client.failing_branches.add("dev")
        self.client.commits[("acme/api", "main")].append(_remote("c3", "Add export", committed_at=None))

        result = await self.service.sync_commits(FROM, TO)
        self.assertEqual(result.success, 2)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.total, 3)
        self.assertEqual(len(result.errors), 2)
        self.assertTrue(any("acme/api/dev" in e for e in result.errors))

        statuses = [(log[3], log[1], log[4]) for log in self._sync_logs()]
        self.assertIn(("success", FROM, None), statuses)
        self.assertIn(("failed", FROM, "fake: Internal Server Error"), statuses)

    async def test_progress_events(self):
        await self._select_api()
        events = []

        async def on_progress(event):
            await asyncio.sleep(0.01)
            events.append(event)

        await self.service.sync_commits(FROM, TO, on_progress=on_progress)
        # Every callback has finished by the time the sync returns
        self.assertEqual(len(events), 3)
        self.assertEqual([e["type"] for e in events].count("branch"), 1)
        progress = [e for e in events if e["type"] == "commits_progress"]
        self.assertEqual(sorted(e["current"] for e in progress), [1, 2])
        self.assertTrue(all(e["total"] == 2 and e["branch_name"] == "main" for e in progress))

    async def test_error_limit(self):
        await self._select_api()
        self.client.commits[("acme/api", "main")] = [
            _remote(f"x{i}", "Broken", committed_at=None) for i in range(5)
        ]
        service = SyncService(self.db, client_factory=lambda platform: self.client, error_limit=2)
        result = await service.sync_commits(FROM, TO)
        self.assertEqual(result.failed, 5)
        self.assertEqual(len(result.errors), 5)
        self.assertEqual(len(result.to_dict()["errors"]), 2)

    async def test_reanalyze(self):
        await self._select_api()
        self.client.commits[("acme/api", "main")].append(_remote("c3", "Add invoice export"))
        self.client.details["c3"] = _details("c3", 20, 0, ["src/invoice.py"])
        await self.service.sync_commits(FROM, TO)

        result = self.service.reanalyze_commits(FROM, TO)
        self.assertEqual((result.success, result.skipped), (1, 2))

        service = SyncService(
            self.db,
            client_factory=lambda platform: self.client,
            rules=load_and_register_rules(["ConfigOnlyRule"]),
        )
        result = service.reanalyze_commits(FROM, TO, force=True)
        self.assertEqual((result.success, result.skipped), (3, 0))
        self.assertEqual(self._flags("c1"), [])

    async def test_reanalyze_keeps_diff_flags(self):
        await self._select_api()
        block = ["total = 0", "for row in rows:", "total += row.amount", "if total > limit:", "raise LimitExceeded(total)"]
        diff = "".join(
            f"diff --git a/{path} b/{path}\n--- a/{path}\n+++ b/{path}\n@@ -0,0 +1,5 @@\n"
            + "".join(f"+{line}\n" for line in block)
            for path in ("src/a.py", "src/b.py")
        )
        self.client.commits[("acme/api", "main")].append(_remote("c3", "Add invoice limits"))
        self.client.details["c3"] = _details("c3", 10, 0, ["src/a.py", "src/b.py"])
        self.client.diffs["c3"] = diff
        service = SyncService(self.db, client_factory=lambda platform: self.client, fetch_diffs=True)
        await service.sync_commits(FROM, TO)
        self.assertEqual(self._flags("c3"), ["possible_copy_paste"])

        result = service.reanalyze_commits(FROM, TO, force=True)
        self.assertEqual(result.success, 3)
        self.assertEqual(self._flags("c3"), ["possible_copy_paste"])
        self.assertEqual(self._flags("c1"), ["small_vague_commit"])


if __name__ == "__main__":
    unittest.main()
