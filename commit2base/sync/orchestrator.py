"""Repository, branch and commit synchronization.

Every provider call is made through the bounded scheduler, and every failure is caught
at the smallest unit it concerns (platform, repository, branch or commit). It is
recorded in the batch result and the ``sync_errors`` log, and the batch carries on.
"""

import asyncio
import inspect
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from commit2base.analyzers import CommitContext, analyze_commit, load_and_register_rules
from commit2base.config import (
    DEFAULT_SYNC_CONFIG,
    LOGGER_COMMIT2BASE,
    LOGGER_SYNC_ERRORS,
    ConfigurationError,
    get_logger,
)
from commit2base.database import operation as ops
from commit2base.database.connection import Database
from commit2base.database.model import Commit
from commit2base.platforms import CommitDetails, PlatformClient, client_for_platform
from commit2base.sync.scheduler import run_with_concurrency

logger = get_logger(LOGGER_COMMIT2BASE)
error_logger = get_logger(LOGGER_SYNC_ERRORS)

ProgressCallback = Callable[[dict], Any]


@dataclass
class SyncResult:
    success: int = 0
    failed: int = 0
    total: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    error_limit: int = DEFAULT_SYNC_CONFIG["error_limit"]
    with_skipped: bool = False

    def add_error(self, message: str):
        self.errors.append(message)
        error_logger.error(message)

    def to_dict(self) -> dict:
        result = {"success": self.success, "failed": self.failed, "total": self.total}
        if self.with_skipped:
            result["skipped"] = self.skipped
        result["errors"] = self.errors[: self.error_limit]
        return result


class _ClientPool:
    """One client per platform for the duration of a sync call"""

    def __init__(self, factory: Callable[..., PlatformClient]):
        self.factory = factory
        self.clients: dict[int, PlatformClient] = {}

    def get(self, platform) -> PlatformClient:
        client = self.clients.get(platform.id)
        if client is None:
            client = self.factory(platform)
            self.clients[platform.id] = client
        return client

    async def close(self):
        for client in self.clients.values():
            try:
                await client.close()
            except Exception as e:
                logger.warning(f"Failed to close platform client: {e}")
        self.clients.clear()


class SyncService:
    def __init__(
        self,
        database: Database,
        client_factory: Callable[..., PlatformClient] = client_for_platform,
        repo_concurrency: int = DEFAULT_SYNC_CONFIG["repo_concurrency"],
        commit_concurrency: int = DEFAULT_SYNC_CONFIG["commit_concurrency"],
        fetch_diffs: bool = DEFAULT_SYNC_CONFIG["fetch_diffs"],
        resolver=None,
        rules=None,
        error_limit: int = DEFAULT_SYNC_CONFIG["error_limit"],
    ):
        if resolver is None:
            from commit2base.identity import DeveloperIdentityResolver

            resolver = DeveloperIdentityResolver(database)

        self.database = database
        self.client_factory = client_factory
        self.repo_concurrency = repo_concurrency
        self.commit_concurrency = commit_concurrency
        self.fetch_diffs = fetch_diffs
        self.resolver = resolver
        self.rules = rules if rules is not None else load_and_register_rules()
        self.error_limit = error_limit
        self._progress_tasks: set = set()

    def _result(self, with_skipped: bool = False) -> SyncResult:
        return SyncResult(error_limit=self.error_limit, with_skipped=with_skipped)

    def _emit(self, on_progress: ProgressCallback | None, event: dict):
        """Hand an event to the callback without waiting on it"""
        if on_progress is None:
            return
        try:
            outcome = on_progress(event)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._progress_tasks.add(task)
            task.add_done_callback(self._progress_done)

    def _progress_done(self, task: asyncio.Future):
        self._progress_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Progress callback failed: {task.exception()}")

    async def _drain_progress(self):
        if self._progress_tasks:
            await asyncio.gather(*list(self._progress_tasks), return_exceptions=True)

    # Repositories

    async def sync_repositories(self, on_progress: ProgressCallback | None = None) -> SyncResult:
        with self.database.session_scope() as session:
            platforms = ops.get_enabled_platforms(session)

        result = self._result()
        pool = _ClientPool(self.client_factory)
        started = 0

        async def sync_platform(platform):
            nonlocal started
            started += 1
            self._emit(
                on_progress,
                {"type": "platform", "current": started, "total": len(platforms), "name": platform.name},
            )
            try:
                repos = await pool.get(platform).list_repositories()
            except ConfigurationError:
                raise
            except Exception as e:
                result.add_error(f"Platform {platform.name}: {e}")
                return

            for repo in repos:
                try:
                    with self.database.session_scope() as session:
                        ops.upsert_repository(session, platform.id, repo)
                    result.success += 1
                except Exception as e:
                    result.failed += 1
                    result.add_error(f"Repo {repo.name}: {e}")
                result.total += 1

        try:
            await run_with_concurrency(platforms, self.repo_concurrency, sync_platform)
        finally:
            await pool.close()
            await self._drain_progress()

        logger.info(f"Repository sync finished: {result.success}/{result.total} upserted")
        return result

    # Branches

    async def sync_branches(self, on_progress: ProgressCallback | None = None) -> SyncResult:
        with self.database.session_scope() as session:
            repositories = ops.get_selected_repositories(session)

        result = self._result()
        pool = _ClientPool(self.client_factory)
        started = 0

        async def sync_repository(repository):
            nonlocal started
            started += 1
            self._emit(
                on_progress,
                {
                    "type": "repository",
                    "current": started,
                    "total": len(repositories),
                    "name": repository.full_name,
                },
            )
            try:
                branches = await pool.get(repository.platform).list_branches(repository.full_name)
            except ConfigurationError:
                raise
            except Exception as e:
                result.failed += 1
                result.add_error(f"Repo {repository.full_name}: {e}")
                return

            for branch in branches:
                try:
                    with self.database.session_scope() as session:
                        ops.upsert_branch(session, repository.id, branch.name, branch.sha)
                    result.success += 1
                except Exception as e:
                    result.failed += 1
                    result.add_error(f"Branch {branch.name}: {e}")
                result.total += 1

            try:
                with self.database.session_scope() as session:
                    ops.mark_synced(session, repository.id, None, _utcnow())
            except Exception as e:
                result.add_error(f"Repo {repository.full_name}: {e}")

        try:
            await run_with_concurrency(repositories, self.repo_concurrency, sync_repository)
        finally:
            await pool.close()
            await self._drain_progress()

        logger.info(f"Branch sync finished: {result.success}/{result.total} upserted")
        return result

    # Commits

    async def sync_commits(
        self,
        from_date: datetime | None,
        to_date: datetime | None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> SyncResult:
        with self.database.session_scope() as session:
            repositories = ops.get_selected_repositories(session)

        result = self._result(with_skipped=True)
        pool = _ClientPool(self.client_factory)
        completed = 0

        async def sync_repository(repository):
            nonlocal completed
            try:
                branches = self._branches_to_sync(repository)
            except Exception as e:
                result.add_error(f"{repository.full_name}: {e}")
                completed += 1
                return

            for branch_id, branch_name in branches:
                self._emit(
                    on_progress,
                    {
                        "type": "branch",
                        "current": completed + 1,
                        "total": len(repositories),
                        "repo_name": repository.full_name,
                        "branch_name": branch_name,
                    },
                )
                await self._sync_branch(
                    pool, repository, branch_id, branch_name, from_date, to_date, force, result, on_progress
                )
            completed += 1

        try:
            await run_with_concurrency(repositories, self.repo_concurrency, sync_repository)
        finally:
            await pool.close()
            await self._drain_progress()

        try:
            stats = self.resolver.resolve()
            logger.info(f"Identity resolution: {stats}")
        except Exception as e:
            logger.error(f"Failed to process identities: {e}")

        logger.info(
            f"Commit sync finished: {result.success} synced, {result.skipped} skipped, {result.failed} failed"
        )
        return result

    def _branches_to_sync(self, repository) -> list[tuple[int, str]]:
        """Known branches, or the default branch created on the spot"""
        with self.database.session_scope() as session:
            branches = [(b.id, b.name) for b in ops.get_branches(session, repository.id)]
            if not branches:
                name = repository.default_branch or "main"
                branches = [(ops.upsert_branch(session, repository.id, name, None), name)]
        return branches

    def _effective_from(self, repository_id, branch_id, from_date, force):
        if force:
            return from_date
        with self.database.session_scope() as session:
            last = ops.latest_successful_sync(session, repository_id, branch_id)
            last_to = last.to_date if last is not None else None
        if last_to is not None and (from_date is None or last_to >= from_date):
            return last_to
        return from_date

    async def _sync_branch(
        self, pool, repository, branch_id, branch_name, from_date, to_date, force, result, on_progress
    ):
        label = f"{repository.full_name}/{branch_name}"
        try:
            effective_from = self._effective_from(repository.id, branch_id, from_date, force)
            if effective_from != from_date:
                logger.debug(f"{label}: resuming from {effective_from}")

            client = pool.get(repository.platform)
            commits = await client.list_commits(repository.full_name, branch_name, effective_from, to_date)

            done = 0

            async def process(remote):
                nonlocal done
                await self._process_commit(client, repository, branch_id, remote, force, result)
                done += 1
                self._emit(
                    on_progress,
                    {
                        "type": "commits_progress",
                        "current": done,
                        "total": len(commits),
                        "repo_name": repository.full_name,
                        "branch_name": branch_name,
                        "message": f"Syncing {repository.full_name} [{branch_name}]: {done}/{len(commits)}",
                    },
                )

            await run_with_concurrency(commits, self.commit_concurrency, process)

            with self.database.session_scope() as session:
                ops.insert_sync_log(
                    session, repository.id, branch_id, ops.SYNC_TYPE_COMMITS,
                    effective_from, to_date, ops.SYNC_STATUS_SUCCESS,
                )
                ops.mark_synced(session, repository.id, branch_id, _utcnow())
        except ConfigurationError:
            raise
        except Exception as e:
            result.add_error(f"{label}: {e}")
            try:
                with self.database.session_scope() as session:
                    ops.insert_sync_log(
                        session, repository.id, branch_id, ops.SYNC_TYPE_COMMITS,
                        from_date, to_date, ops.SYNC_STATUS_FAILED, str(e),
                    )
            except Exception as log_error:
                logger.error(f"Failed to record sync failure for {label}: {log_error}")

    async def _process_commit(self, client, repository, branch_id, remote, force, result):
        sha = remote.sha
        try:
            with self.database.session_scope() as session:
                existing = ops.find_commit(session, repository.id, sha)
                if existing is not None and not force and not ops.commit_needs_repair(session, existing):
                    result.skipped += 1
                    return

            if remote.committed_at is None:
                raise ValueError("commit has no timestamp")

            detail_complete = True
            try:
                details = await client.get_commit_details(repository.full_name, sha)
            except Exception as e:
                error_logger.warning(f"Failed to get details for {sha}: {e}")
                details = CommitDetails(sha=sha)
                detail_complete = False

            diff_text = None
            if self.fetch_diffs:
                try:
                    diff_text = await client.get_commit_diff(repository.full_name, sha)
                except Exception as e:
                    error_logger.warning(f"Failed to get diff for {sha}: {e}")

            flags = analyze_commit(CommitContext.from_remote(remote, details, diff_text), rules=self.rules)

            # Commit, files and flags land together or not at all
            with self.database.session_scope() as session:
                commit_id = ops.upsert_commit(
                    session, repository.id, branch_id, remote, details, detail_complete
                )
                ops.replace_commit_files(session, commit_id, details.files)
                ops.replace_commit_flags(session, commit_id, flags)

            result.success += 1
        except Exception as e:
            result.failed += 1
            result.add_error(f"Commit {sha[:7]}: {e}")
        result.total += 1

    # Re-analysis

    def reanalyze_commits(
        self, from_date: datetime | None, to_date: datetime | None, force: bool = False
    ) -> SyncResult:
        """Re-run the flag rules over stored commits using their stored file rows.

        Without ``force`` only commits that carry no flags yet are analyzed. Flags of
        diff-based rules are left as stored since no diff text is available here.
        """
        result = self._result(with_skipped=True)
        with self.database.session_scope() as session:
            commit_ids = [c.id for c in ops.get_commits_in_range(session, from_date, to_date)]

        for commit_id in commit_ids:
            try:
                with self.database.session_scope() as session:
                    if not force and ops.has_flags(session, commit_id):
                        result.skipped += 1
                        continue
                    commit = session.get(Commit, commit_id)
                    context = CommitContext.from_row(commit, commit.files)
                    flags = analyze_commit(context, rules=self.rules)
                    # Stored rows carry no diff text
                    keep = set()
                    if not context.diff_text:
                        keep = {rule.flag_type for rule in self.rules if rule.requires_diff}
                    ops.replace_commit_flags(session, commit_id, flags, keep_types=keep)
                result.success += 1
            except Exception as e:
                result.failed += 1
                result.add_error(f"Commit {commit_id}: {e}")
            result.total += 1

        logger.info(f"Re-analysis finished: {result.success} analyzed, {result.skipped} skipped")
        return result


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
