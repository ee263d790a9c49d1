import logging
import os
from typing import Iterator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)

DB_USER = os.getenv("DB_USER", "app")
DB_PASS = os.getenv("DB_PASS", "app")
DB_NAME = os.getenv("DB_NAME", "appdb")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_SCHEMA = os.getenv("DB_SCHEMA", "teashop")

# Use psycopg3; set search_path so unqualified tables use our schema.
# DATABASE_URL wins when set (tests point it at SQLite).
options = f"-csearch_path={DB_SCHEMA},public"
DATABASE_URL = os.getenv("DATABASE_URL") or (
    f"postgresql+psycopg://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
    f"?options={options}"
)


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True, future=True)

    eng = create_engine(url, connect_args={"check_same_thread": False}, future=True)

    @event.listens_for(eng, "connect")
    def _sqlite_pragmas(dbapi_conn, _record):
        # WAL lets readers run alongside the single writer.
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL")
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    return eng


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def init_db(bind: Engine = engine) -> None:
    """
    Ensure the schema exists, then create tables (idempotent).
    Called once at application startup.
    """
    if bind.dialect.name == "postgresql":
        with bind.begin() as conn:
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{DB_SCHEMA}"'))
    # Import here to avoid circulars
    from .models import Base  # noqa
    Base.metadata.create_all(bind=bind)
    logger.info("database ready on %s", bind.url.render_as_string(hide_password=True))


def get_session() -> Iterator[Session]:
    """
    FastAPI dependency: yields a DB session, commits on success, rolls back on error.

    Everything a request writes shares this one transaction, so a checkout
    either lands completely or not at all.
    """
    yield from session_scope(SessionLocal)


def session_scope(factory: sessionmaker) -> Iterator[Session]:
    s = factory()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
