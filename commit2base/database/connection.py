from contextlib import contextmanager
from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
import os

from commit2base.config import (
    LOGGER_COMMIT2BASE,
    ConfigurationError,
    get_executable_dir,
    get_logger,
    load_output_config,
)

logger = get_logger(LOGGER_COMMIT2BASE)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Engine plus session factory, passed explicitly to every component that persists data."""

    def __init__(self, url: str, **engine_kwargs):
        self.url = url
        self.engine: Engine | None = create_engine(url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    @classmethod
    def in_memory(cls) -> "Database":
        """Single shared in-memory SQLite connection, used by tests and dry runs."""
        database = cls(
            "sqlite://",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        database.create_tables()
        return database

    def create_tables(self):
        from commit2base.database.model import create_tables

        create_tables(self.engine)

    def reset_tables(self):
        from commit2base.database.model import reset_tables

        reset_tables(self.engine)

    def get_session(self):
        """Get a new session"""
        if self.engine is None:
            raise RuntimeError("Database connection is closed.")
        return self.Session()

    @contextmanager
    def session_scope(self):
        """Provide a transactional scope around a series of operations."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self):
        """Close database connection"""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None
            logger.debug("Database connection closed successfully")


def build_database_url(config: dict) -> str:
    if config["type"] == "postgresql":
        pg = config["postgresql"]
        return f"postgresql+psycopg2://{pg['user']}:{pg['password']}@{pg['host']}:{pg['port']}/{pg['database']}"
    if config["type"] == "sqlite":
        path = config["sqlite"]["database"]
        if path != ":memory:" and not os.path.isabs(path):
            path = os.path.join(get_executable_dir(), path)
        return f"sqlite:///{path}"
    raise ConfigurationError(f"Unsupported output setting: {config['type']}")


def init_output(config: dict | None = None) -> Database:
    """Initialize the database described by the output config section"""
    config = config or load_output_config()
    db_url = build_database_url(config)

    if config["type"] == "postgresql":
        database = Database(db_url, pool_size=20, max_overflow=0)
    else:
        path = config["sqlite"]["database"]
        if path == ":memory:":
            database = Database.in_memory()
            return database
        _dir = os.path.dirname(db_url[len("sqlite:///"):])
        if _dir:
            os.makedirs(_dir, exist_ok=True)
        database = Database(db_url, connect_args={"check_same_thread": False})

    logger.info(f"Database connected: {database.engine.url.render_as_string(hide_password=True)}")
    database.create_tables()
    return database
