"""Engine and session factory for the metadata database."""
import logging
import os

from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.engine import URL, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

logger = logging.getLogger(__name__)

TESTING = os.getenv("TESTING") == "1"
if not TESTING:
    load_dotenv(".env")


def _database_url() -> URL:
    raw = os.getenv("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL environment variable is required")
    url = make_url(raw)
    name = url.database or "unknown"
    # tests must never run against the real service database
    if TESTING and "securefms" in name:
        raise RuntimeError(f"TESTING is enabled but DATABASE_URL points at '{name}'")
    logger.info("Using %s database '%s'", url.get_backend_name(), name)
    return url


def _engine_options(url: URL) -> dict:
    if url.get_backend_name() == "sqlite":
        # sessions are shared across the threadpool FastAPI runs sync handlers in
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


_url = _database_url()
engine = create_engine(_url, **_engine_options(_url))
SessionLocal = sessionmaker(bind=engine, autoflush=False)
Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session that is closed after the request."""
    with SessionLocal() as db:
        yield db
