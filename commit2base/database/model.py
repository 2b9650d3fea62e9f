from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    inspect,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from commit2base.config import LOGGER_COMMIT2BASE, get_logger

logger = get_logger(LOGGER_COMMIT2BASE)

# SQLAlchemy setup
Base = declarative_base()


def create_tables(engine):
    """Create missing tables in the database, existing tables are left untouched."""
    if engine is None:
        raise RuntimeError(
            "Database engine is not initialized. Please call init_output() first."
        )

    existing_tables = inspect(engine).get_table_names()
    Base.metadata.create_all(engine)
    created = sorted(set(inspect(engine).get_table_names()) - set(existing_tables))
    if created:
        logger.info(f"Tables created: {created}")


def reset_tables(engine):
    """Reset database by dropping and recreating all tables"""
    if engine is None:
        raise RuntimeError(
            "Database engine is not initialized. Please call init_output() first."
        )

    # Dependent tables first
    table_order = [
        "commit_flags",
        "commit_files",
        "commits",
        "sync_log",
        "developer_identities",
        "developers",
        "branches",
        "repositories",
        "platforms",
        "settings",
    ]

    with engine.connect() as conn:
        conn = conn.execution_options(isolation_level="AUTOCOMMIT")
        for table in table_order:
            logger.debug(f"DROP TABLE IF EXISTS {table};")
            conn.execute(text(f"DROP TABLE IF EXISTS {table};"))
    create_tables(engine)


def _iso(value):
    return value.isoformat() if value is not None else ""


class Platform(Base):
    __tablename__ = "platforms"
    id = Column(Integer, primary_key=True)
    type = Column(String(32), nullable=False)
    name = Column(String(255), nullable=False, unique=True)
    url = Column(Text, nullable=False)
    token = Column(Text, nullable=False)
    username = Column(String(255))
    is_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    repositories = relationship(
        "Repository", back_populates="platform", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        # Token is never exported
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "url": self.url,
            "username": self.username or "",
            "is_enabled": bool(self.is_enabled),
        }


class Repository(Base):
    __tablename__ = "repositories"
    __table_args__ = (
        UniqueConstraint("platform_id", "external_id", name="uq_repository_platform_external"),
        Index("idx_repositories_platform", "platform_id"),
    )
    id = Column(Integer, primary_key=True)
    platform_id = Column(
        Integer, ForeignKey("platforms.id", ondelete="CASCADE"), nullable=False
    )
    external_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    full_name = Column(Text, nullable=False)
    default_branch = Column(String(255))
    web_url = Column(Text)
    is_selected = Column(Boolean, nullable=False, default=False)
    last_synced_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    platform = relationship("Platform", back_populates="repositories")
    branches = relationship(
        "Branch", back_populates="repository", cascade="all, delete-orphan"
    )
    commits = relationship(
        "Commit", back_populates="repository", cascade="all, delete-orphan"
    )
    sync_logs = relationship(
        "SyncLogEntry", back_populates="repository", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "platform_id": self.platform_id,
            "external_id": self.external_id,
            "name": self.name,
            "full_name": self.full_name,
            "default_branch": self.default_branch or "",
            "is_selected": bool(self.is_selected),
            "last_synced_at": _iso(self.last_synced_at),
        }


class Branch(Base):
    __tablename__ = "branches"
    __table_args__ = (
        UniqueConstraint("repository_id", "name", name="uq_branch_repository_name"),
        Index("idx_branches_repository", "repository_id"),
    )
    id = Column(Integer, primary_key=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    last_commit_sha = Column(String(64))
    last_synced_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())

    repository = relationship("Repository", back_populates="branches")


class Developer(Base):
    __tablename__ = "developers"
    id = Column(Integer, primary_key=True)
    canonical_name = Column(String(255), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    identities = relationship(
        "DeveloperIdentity",
        back_populates="developer",
        cascade="all, delete-orphan",
        order_by="DeveloperIdentity.id",
    )


class DeveloperIdentity(Base):
    __tablename__ = "developer_identities"
    id = Column(Integer, primary_key=True)
    developer_id = Column(
        Integer, ForeignKey("developers.id", ondelete="CASCADE"), nullable=False
    )
    name = Column(String(255), nullable=False)
    # Stored lower-cased
    email = Column(String(255), nullable=False, unique=True)

    developer = relationship("Developer", back_populates="identities")

    def to_dict(self) -> dict:
        return {"name": self.name, "email": self.email}


class Commit(Base):
    __tablename__ = "commits"
    __table_args__ = (
        UniqueConstraint("repository_id", "sha", name="uq_commit_repository_sha"),
        Index("idx_commits_repository", "repository_id"),
        Index("idx_commits_branch", "branch_id"),
        Index("idx_commits_developer", "developer_id"),
        Index("idx_commits_date", "committed_at"),
    )
    id = Column(Integer, primary_key=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    branch_id = Column(Integer, ForeignKey("branches.id", ondelete="SET NULL"))
    developer_id = Column(Integer, ForeignKey("developers.id", ondelete="SET NULL"))
    sha = Column(String(64), nullable=False)
    message = Column(Text)
    author_name = Column(String(255))
    author_email = Column(String(255))
    committed_at = Column(DateTime, nullable=False)
    lines_added = Column(Integer, nullable=False, default=0)
    lines_removed = Column(Integer, nullable=False, default=0)
    lines_net = Column(Integer, nullable=False, default=0)
    files_changed = Column(Integer, nullable=False, default=0)
    is_merge_commit = Column(Boolean, nullable=False, default=False)
    lines_estimated = Column(Boolean, nullable=False, default=False)
    detail_complete = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, server_default=func.now())

    repository = relationship("Repository", back_populates="commits")
    files = relationship(
        "CommitFile",
        back_populates="commit",
        cascade="all, delete-orphan",
        order_by="CommitFile.id",
    )
    flags = relationship(
        "CommitFlag", back_populates="commit", cascade="all, delete-orphan"
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "repository_id": self.repository_id,
            "sha": self.sha,
            "message": self.message or "",
            "author_name": self.author_name or "",
            "author_email": self.author_email or "",
            "committed_at": _iso(self.committed_at),
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
            "lines_net": self.lines_net,
            "files_changed": self.files_changed,
            "is_merge_commit": bool(self.is_merge_commit),
            "lines_estimated": bool(self.lines_estimated),
            "developer_id": self.developer_id,
        }


class CommitFile(Base):
    __tablename__ = "commit_files"
    __table_args__ = (Index("idx_commit_files_commit", "commit_id"),)
    id = Column(Integer, primary_key=True)
    commit_id = Column(
        Integer, ForeignKey("commits.id", ondelete="CASCADE"), nullable=False
    )
    filename = Column(Text, nullable=False)
    status = Column(String(16))
    lines_added = Column(Integer, nullable=False, default=0)
    lines_removed = Column(Integer, nullable=False, default=0)
    is_excluded = Column(Boolean, nullable=False, default=False)
    is_estimated = Column(Boolean, nullable=False, default=False)

    commit = relationship("Commit", back_populates="files")


class CommitFlag(Base):
    __tablename__ = "commit_flags"
    __table_args__ = (Index("idx_commit_flags_commit", "commit_id"),)
    id = Column(Integer, primary_key=True)
    commit_id = Column(
        Integer, ForeignKey("commits.id", ondelete="CASCADE"), nullable=False
    )
    flag_type = Column(String(64), nullable=False)
    details = Column(JSON)

    commit = relationship("Commit", back_populates="flags")


class SyncLogEntry(Base):
    __tablename__ = "sync_log"
    __table_args__ = (
        Index("idx_sync_log_lookup", "repository_id", "branch_id", "sync_type", "status"),
    )
    id = Column(Integer, primary_key=True)
    repository_id = Column(
        Integer, ForeignKey("repositories.id", ondelete="CASCADE"), nullable=False
    )
    branch_id = Column(Integer, ForeignKey("branches.id", ondelete="CASCADE"))
    sync_type = Column(String(32), nullable=False)
    from_date = Column(DateTime)
    to_date = Column(DateTime)
    status = Column(String(16), nullable=False)
    error_message = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    repository = relationship("Repository", back_populates="sync_logs")


class Setting(Base):
    __tablename__ = "settings"
    key = Column(String(255), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
