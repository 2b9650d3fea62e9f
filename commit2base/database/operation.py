from datetime import datetime

from sqlalchemy import func, select, delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, contains_eager

from commit2base.config import LOGGER_COMMIT2BASE, get_logger
from commit2base.database.model import (
    Branch,
    Commit,
    CommitFile,
    CommitFlag,
    Platform,
    Repository,
    Setting,
    SyncLogEntry,
)
from commit2base.git.utils import is_file_excluded

logger = get_logger(LOGGER_COMMIT2BASE)

DEFAULT_SETTINGS = {
    "default_date_range_days": "7",
    "timezone": "UTC",
}

SYNC_TYPE_COMMITS = "commits"
SYNC_STATUS_SUCCESS = "success"
SYNC_STATUS_FAILED = "failed"


def _upsert(session: Session, model, values: dict, index_elements: list[str], update_fields: list[str]):
    """INSERT ... ON CONFLICT (index_elements) DO UPDATE for the session's dialect"""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model).values(**values)
    else:
        raise RuntimeError(f"Upsert is not supported for dialect: {dialect}")

    set_ = {field: stmt.excluded[field] for field in update_fields}
    if set_:
        stmt = stmt.on_conflict_do_update(index_elements=index_elements, set_=set_)
    else:
        stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    session.execute(stmt)

    if not hasattr(model, "id"):
        return None
    conditions = [getattr(model, key) == values[key] for key in index_elements]
    return session.execute(select(model.id).where(*conditions)).scalar_one()


# Platforms


def upsert_platform(session: Session, platform_config: dict) -> int:
    """Create or update a platform by its configured name"""
    values = {
        "type": platform_config["type"],
        "name": platform_config["name"],
        "url": platform_config["url"],
        "token": platform_config["token"],
        "username": platform_config.get("username") or None,
        "is_enabled": bool(platform_config.get("enabled", True)),
    }
    return _upsert(
        session,
        Platform,
        values,
        index_elements=["name"],
        update_fields=["type", "url", "token", "username", "is_enabled"],
    )


def upsert_platforms(session: Session, platforms_config: list[dict]) -> list[int]:
    ids = [upsert_platform(session, platform) for platform in platforms_config]
    if ids:
        logger.info(f"Platforms registered from config: {len(ids)}")
    return ids


def get_enabled_platforms(session: Session) -> list[Platform]:
    return list(
        session.scalars(
            select(Platform).where(Platform.is_enabled.is_(True)).order_by(Platform.id)
        )
    )


def get_platform_by_name(session: Session, name: str) -> Platform | None:
    return session.scalars(select(Platform).where(Platform.name == name)).first()


# Repositories and branches


def upsert_repository(session: Session, platform_id: int, remote) -> int:
    """Insert a listed repository or refresh its mutable fields; the selection flag is kept"""
    values = {
        "platform_id": platform_id,
        "external_id": str(remote.external_id),
        "name": remote.name,
        "full_name": remote.full_name,
        "default_branch": remote.default_branch,
        "web_url": remote.url,
    }
    return _upsert(
        session,
        Repository,
        values,
        index_elements=["platform_id", "external_id"],
        update_fields=["name", "full_name", "default_branch", "web_url"],
    )


def get_selected_repositories(session: Session) -> list[Repository]:
    """Selected repositories whose platform is enabled"""
    stmt = (
        select(Repository)
        .join(Platform, Repository.platform_id == Platform.id)
        .where(Repository.is_selected.is_(True), Platform.is_enabled.is_(True))
        .options(contains_eager(Repository.platform))
        .order_by(Repository.id)
    )
    return list(session.scalars(stmt))


def set_repository_selected(session: Session, full_name: str, selected: bool) -> int:
    repositories = list(
        session.scalars(select(Repository).where(Repository.full_name == full_name))
    )
    for repository in repositories:
        repository.is_selected = selected
    return len(repositories)


def upsert_branch(session: Session, repository_id: int, name: str, last_commit_sha: str | None) -> int:
    values = {
        "repository_id": repository_id,
        "name": name,
        "last_commit_sha": last_commit_sha,
    }
    return _upsert(
        session,
        Branch,
        values,
        index_elements=["repository_id", "name"],
        update_fields=["last_commit_sha"],
    )


def get_branches(session: Session, repository_id: int) -> list[Branch]:
    return list(
        session.scalars(
            select(Branch).where(Branch.repository_id == repository_id).order_by(Branch.id)
        )
    )


def mark_synced(session: Session, repository_id: int, branch_id: int | None, synced_at: datetime):
    repository = session.get(Repository, repository_id)
    if repository is not None:
        repository.last_synced_at = synced_at
    if branch_id is not None:
        branch = session.get(Branch, branch_id)
        if branch is not None:
            branch.last_synced_at = synced_at


# Commits


def find_commit(session: Session, repository_id: int, sha: str) -> Commit | None:
    return session.scalars(
        select(Commit).where(Commit.repository_id == repository_id, Commit.sha == sha)
    ).first()


def commit_needs_repair(session: Session, commit: Commit) -> bool:
    """A stored commit whose file-level detail is missing or was never completed"""
    if not commit.detail_complete:
        return True
    if (commit.lines_added or 0) > 0:
        file_lines = session.execute(
            select(func.sum(CommitFile.lines_added)).where(CommitFile.commit_id == commit.id)
        ).scalar()
        return not file_lines
    return False


def upsert_commit(
    session: Session,
    repository_id: int,
    branch_id: int | None,
    remote,
    details,
    detail_complete: bool = True,
) -> int:
    lines_added = details.lines_added if details else 0
    lines_removed = details.lines_removed if details else 0
    values = {
        "repository_id": repository_id,
        "branch_id": branch_id,
        "sha": remote.sha,
        "message": remote.message,
        "author_name": remote.author_name,
        "author_email": remote.author_email.strip() if remote.author_email else remote.author_email,
        "committed_at": remote.committed_at,
        "lines_added": lines_added,
        "lines_removed": lines_removed,
        "lines_net": lines_added - lines_removed,
        "files_changed": details.files_changed if details else 0,
        "is_merge_commit": bool(remote.is_merge_commit),
        "lines_estimated": bool(details.estimated) if details else False,
        "detail_complete": detail_complete,
    }
    return _upsert(
        session,
        Commit,
        values,
        index_elements=["repository_id", "sha"],
        update_fields=[
            "branch_id",
            "message",
            "author_name",
            "author_email",
            "committed_at",
            "lines_added",
            "lines_removed",
            "lines_net",
            "files_changed",
            "is_merge_commit",
            "lines_estimated",
            "detail_complete",
        ],
    )


def replace_commit_files(session: Session, commit_id: int, files) -> int:
    session.execute(delete(CommitFile).where(CommitFile.commit_id == commit_id))
    rows = [
        CommitFile(
            commit_id=commit_id,
            filename=f.filename,
            status=f.status,
            lines_added=f.lines_added,
            lines_removed=f.lines_removed,
            is_excluded=is_file_excluded(f.filename),
            is_estimated=bool(f.estimated),
        )
        for f in files
    ]
    session.add_all(rows)
    return len(rows)


def replace_commit_flags(session: Session, commit_id: int, flags, keep_types=()) -> int:
    """Swap the stored flags of a commit, leaving flags listed in keep_types untouched"""
    stmt = delete(CommitFlag).where(CommitFlag.commit_id == commit_id)
    if keep_types:
        stmt = stmt.where(CommitFlag.flag_type.not_in(list(keep_types)))
    session.execute(stmt)
    rows = [
        CommitFlag(commit_id=commit_id, flag_type=flag.type, details=flag.details)
        for flag in flags
    ]
    session.add_all(rows)
    return len(rows)


def get_commits_in_range(
    session: Session, from_date: datetime | None, to_date: datetime | None
) -> list[Commit]:
    stmt = select(Commit).order_by(Commit.committed_at, Commit.id)
    if from_date is not None:
        stmt = stmt.where(Commit.committed_at >= from_date)
    if to_date is not None:
        stmt = stmt.where(Commit.committed_at <= to_date)
    return list(session.scalars(stmt))


def has_flags(session: Session, commit_id: int) -> bool:
    return (
        session.execute(
            select(CommitFlag.id).where(CommitFlag.commit_id == commit_id).limit(1)
        ).first()
        is not None
    )


# Sync log


def latest_successful_sync(
    session: Session, repository_id: int, branch_id: int | None, sync_type: str = SYNC_TYPE_COMMITS
) -> SyncLogEntry | None:
    """Successful entry with the latest to_date for this repository/branch"""
    stmt = (
        select(SyncLogEntry)
        .where(
            SyncLogEntry.repository_id == repository_id,
            SyncLogEntry.sync_type == sync_type,
            SyncLogEntry.status == SYNC_STATUS_SUCCESS,
            SyncLogEntry.to_date.is_not(None),
        )
        .order_by(SyncLogEntry.to_date.desc(), SyncLogEntry.id.desc())
        .limit(1)
    )
    if branch_id is None:
        stmt = stmt.where(SyncLogEntry.branch_id.is_(None))
    else:
        stmt = stmt.where(SyncLogEntry.branch_id == branch_id)
    return session.scalars(stmt).first()


def insert_sync_log(
    session: Session,
    repository_id: int,
    branch_id: int | None,
    sync_type: str,
    from_date: datetime | None,
    to_date: datetime | None,
    status: str,
    error_message: str | None = None,
) -> SyncLogEntry:
    entry = SyncLogEntry(
        repository_id=repository_id,
        branch_id=branch_id,
        sync_type=sync_type,
        from_date=from_date,
        to_date=to_date,
        status=status,
        error_message=error_message,
    )
    session.add(entry)
    session.flush()
    return entry


# Settings


def get_setting(session: Session, key: str, default: str | None = None) -> str | None:
    setting = session.get(Setting, key)
    if setting is not None:
        return setting.value
    if default is not None:
        return default
    return DEFAULT_SETTINGS.get(key)


def set_setting(session: Session, key: str, value) -> None:
    _upsert(
        session,
        Setting,
        {"key": key, "value": str(value)},
        index_elements=["key"],
        update_fields=["value"],
    )
