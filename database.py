import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent / "alembic"


class Base(DeclarativeBase):
    pass


def _is_memory_url(database_url: str) -> bool:
    return database_url in {"sqlite://", "sqlite:///:memory:"} or database_url.endswith(
        ":memory:"
    )


def _create_engine(database_url: str) -> Engine:
    connect_args: dict[str, object] = {}
    kwargs: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    if _is_memory_url(database_url):
        # every session must see the same in-memory database
        kwargs["poolclass"] = StaticPool

    eng = create_engine(database_url, connect_args=connect_args, **kwargs)
    if database_url.startswith("sqlite") and not _is_memory_url(database_url):
        event.listen(eng, "connect", _enable_sqlite_pragmas)
    return eng


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


class Storage:
    """Owns the engine and session factory for one process (or one test).

    Built once at start-up and handed to request handlers; nothing else
    creates engines.
    """

    def __init__(self, database_url: Optional[str] = None) -> None:
        self.database_url = database_url or get_settings().database_url
        self.engine = _create_engine(self.database_url)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

    @property
    def is_ephemeral(self) -> bool:
        return _is_memory_url(self.database_url)

    def create_schema(self) -> None:
        """Build the tables in memory, or migrate a file database to head."""
        if not self.is_ephemeral:
            self.migrate()
            return
        # models must be imported so their tables are registered on Base
        import models  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(f"storage_schema_ready: url={self.database_url}")

    def migrate(self, revision: str = "head") -> None:
        cfg = Config()
        cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
        cfg.set_main_option("sqlalchemy.url", self.database_url.replace("%", "%%"))
        command.upgrade(cfg, revision)
        logger.info(f"storage_migrated: url={self.database_url} revision={revision}")

    def session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
