"""
Database package for commit2base.
Provides database connection, models and operations.
"""

from commit2base.database.connection import Database, build_database_url, init_output
from commit2base.database.model import (
    create_tables,
    reset_tables,
    Platform,
    Repository,
    Branch,
    Developer,
    DeveloperIdentity,
    Commit,
    CommitFile,
    CommitFlag,
    SyncLogEntry,
    Setting,
)
from commit2base.database.operation import (
    upsert_platform,
    upsert_platforms,
    upsert_repository,
    upsert_branch,
    upsert_commit,
    replace_commit_files,
    replace_commit_flags,
    latest_successful_sync,
    insert_sync_log,
    get_setting,
    set_setting,
)

__all__ = [
    "Database",
    "build_database_url",
    "init_output",
    "create_tables",
    "reset_tables",
    "Platform",
    "Repository",
    "Branch",
    "Developer",
    "DeveloperIdentity",
    "Commit",
    "CommitFile",
    "CommitFlag",
    "SyncLogEntry",
    "Setting",
    "upsert_platform",
    "upsert_platforms",
    "upsert_repository",
    "upsert_branch",
    "upsert_commit",
    "replace_commit_files",
    "replace_commit_flags",
    "latest_successful_sync",
    "insert_sync_log",
    "get_setting",
    "set_setting",
]
