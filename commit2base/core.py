import argparse
import asyncio
import functools
import json
import sys
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from tqdm import tqdm

from commit2base.analyzers import load_and_register_rules
from commit2base.config import (
    LOGGER_COMMIT2BASE,
    ConfigurationError,
    get_logger,
    load_analysis_config,
    load_platforms_config,
    load_sync_config,
    setup_logging,
)
from commit2base.database import Database, init_output
from commit2base.database import operation as ops
from commit2base.estimation import get_time_estimate, load_commits
from commit2base.identity import DeveloperIdentityResolver
from commit2base.platforms import client_for_platform
from commit2base.sync import SyncService

logger = get_logger(LOGGER_COMMIT2BASE)


class TqdmProgress:
    """Render orchestrator progress events as tqdm bars"""

    def __init__(self):
        self.outer = None
        self.branches = {}

    def __call__(self, event: dict):
        if event["type"] == "commits_progress":
            key = (event["repo_name"], event["branch_name"])
            bar = self.branches.get(key)
            if bar is None:
                bar = tqdm(
                    total=event["total"],
                    desc=f"{event['repo_name']} [{event['branch_name']}]",
                    unit="commit",
                    leave=False,
                )
                self.branches[key] = bar
            bar.n = event["current"]
            bar.refresh()
            if event["current"] >= event["total"]:
                bar.close()
                del self.branches[key]
            return

        if self.outer is None:
            self.outer = tqdm(total=event["total"], desc=f"Syncing {event['type']}s", unit=event["type"])
        self.outer.n = event["current"]
        label = event.get("name") or f"{event.get('repo_name')} [{event.get('branch_name')}]"
        self.outer.set_postfix_str(label)

    def close(self):
        for bar in self.branches.values():
            bar.close()
        self.branches.clear()
        if self.outer is not None:
            self.outer.close()
            self.outer = None


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def _tzinfo(name: str):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone {name}, using UTC")
        return timezone.utc


def parse_date_arg(value: str | None, tz, end_of_day: bool = False) -> datetime | None:
    """Parse YYYY-MM-DD or an ISO timestamp in the configured timezone, returning naive UTC"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise ValueError(f"Invalid date: {value}") from e
    if len(value) == 10:
        parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed.astimezone(timezone.utc).replace(tzinfo=None, microsecond=0)


def resolve_window(database: Database, from_arg: str | None, to_arg: str | None):
    """Requested sync window, defaulting to the last default_date_range_days days"""
    with database.session_scope() as session:
        tz = _tzinfo(ops.get_setting(session, "timezone"))
        days = int(ops.get_setting(session, "default_date_range_days"))

    to_date = parse_date_arg(to_arg, tz, end_of_day=True) or datetime.now(timezone.utc).replace(
        tzinfo=None, microsecond=0
    )
    from_date = parse_date_arg(from_arg, tz) or to_date - timedelta(days=days)
    return from_date, to_date


def build_sync_service(database: Database) -> SyncService:
    sync_config = load_sync_config()
    client_factory = functools.partial(
        client_for_platform,
        timeout=float(sync_config["request_timeout"]),
        connect_timeout=float(sync_config["connect_timeout"]),
        max_pages=int(sync_config["max_pages"]),
    )
    rules = load_and_register_rules(load_analysis_config().get("rules"))
    return SyncService(
        database,
        client_factory=client_factory,
        repo_concurrency=int(sync_config["repo_concurrency"]),
        commit_concurrency=int(sync_config["commit_concurrency"]),
        fetch_diffs=bool(sync_config["fetch_diffs"]),
        resolver=DeveloperIdentityResolver(database),
        rules=rules,
        error_limit=int(sync_config["error_limit"]),
    )


async def check_connections(database: Database, name: str | None = None) -> list[dict]:
    sync_config = load_sync_config()
    with database.session_scope() as session:
        platforms = ops.get_enabled_platforms(session)
    if name:
        platforms = [p for p in platforms if p.name == name]
        if not platforms:
            raise ConfigurationError(f"No enabled platform named {name}")

    results = []
    for platform in platforms:
        client = client_for_platform(
            platform,
            timeout=float(sync_config["request_timeout"]),
            connect_timeout=float(sync_config["connect_timeout"]),
        )
        async with client:
            outcome = await client.test_connection()
        results.append({"platform": platform.name, **outcome.to_dict()})
    return results


async def _run_with_progress(coro_factory):
    progress = TqdmProgress()
    try:
        return await coro_factory(progress)
    finally:
        progress.close()


def main():
    parser = argparse.ArgumentParser(
        description="Mirror commit history from Azure DevOps, GitHub and GitLab into a database"
    )
    parser.add_argument("--reset-db", action="store_true", help="Drop and recreate all tables")
    parser.add_argument(
        "--test-connection",
        nargs="?",
        const="",
        metavar="PLATFORM",
        help="Test the connection of every enabled platform, or only the named one",
    )
    parser.add_argument("--sync-repos", action="store_true", help="List repositories of every enabled platform")
    parser.add_argument("--sync-branches", action="store_true", help="List branches of selected repositories")
    parser.add_argument("--sync-commits", action="store_true", help="Sync commits of selected repositories")
    parser.add_argument("--from", dest="from_date", type=str, help="Window start, YYYY-MM-DD or ISO timestamp")
    parser.add_argument("--to", dest="to_date", type=str, help="Window end, YYYY-MM-DD or ISO timestamp")
    parser.add_argument("--force", action="store_true", help="Refetch the full window and reprocess stored commits")
    parser.add_argument("--select", metavar="FULL_NAME", help="Include a repository in sync")
    parser.add_argument("--unselect", metavar="FULL_NAME", help="Exclude a repository from sync")
    parser.add_argument("--merge", nargs=2, type=int, metavar=("SOURCE", "TARGET"), help="Merge two developers")
    parser.add_argument("--rename", nargs=2, metavar=("ID", "NAME"), help="Rename a developer")
    parser.add_argument("--developers", action="store_true", help="List developers with their identities")
    parser.add_argument("--reanalyze", action="store_true", help="Re-run commit flag rules over stored commits")
    parser.add_argument("--estimate", action="store_true", help="Heuristic time estimate for the window")
    parser.add_argument("--developer", type=int, help="Limit --estimate to one developer")

    if len(sys.argv) == 1:
        parser.print_help()
        return
    args = parser.parse_args()

    setup_logging()
    try:
        database = init_output()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)

    try:
        with database.session_scope() as session:
            ops.upsert_platforms(session, load_platforms_config())

        if args.reset_db:
            database.reset_tables()
            with database.session_scope() as session:
                ops.upsert_platforms(session, load_platforms_config())
            logger.info("Database reset")
            return

        if args.test_connection is not None:
            _print_json(asyncio.run(check_connections(database, args.test_connection or None)))

        if args.select or args.unselect:
            with database.session_scope() as session:
                for full_name, selected in ((args.select, True), (args.unselect, False)):
                    if full_name:
                        count = ops.set_repository_selected(session, full_name, selected)
                        if not count:
                            logger.warning(f"No repository named {full_name}")

        resolver = DeveloperIdentityResolver(database)
        if args.merge:
            resolver.merge(*args.merge)
        if args.rename:
            resolver.rename(int(args.rename[0]), args.rename[1])

        needs_service = args.sync_repos or args.sync_branches or args.sync_commits or args.reanalyze
        service = build_sync_service(database) if needs_service else None

        if args.sync_repos:
            result = asyncio.run(_run_with_progress(lambda p: service.sync_repositories(on_progress=p)))
            _print_json(result.to_dict())

        if args.sync_branches:
            result = asyncio.run(_run_with_progress(lambda p: service.sync_branches(on_progress=p)))
            _print_json(result.to_dict())

        if args.sync_commits or args.reanalyze or args.estimate:
            from_date, to_date = resolve_window(database, args.from_date, args.to_date)

        if args.sync_commits:
            result = asyncio.run(
                _run_with_progress(
                    lambda p: service.sync_commits(from_date, to_date, force=args.force, on_progress=p)
                )
            )
            _print_json(result.to_dict())

        if args.reanalyze:
            _print_json(service.reanalyze_commits(from_date, to_date, force=args.force).to_dict())

        if args.estimate:
            commits = load_commits(database, from_date, to_date, args.developer)
            estimate = get_time_estimate(commits)
            estimate["methods"]["gaps"]["hours"] = round(estimate["methods"]["gaps"]["hours"], 1)
            _print_json({"from": from_date, "to": to_date, "commits": len(commits), **estimate})

        if args.developers:
            _print_json(resolver.list_developers())

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)
    finally:
        database.close()


if __name__ == "__main__":
    main()
