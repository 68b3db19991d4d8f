"""
Database connection and session management.
"""

from contextlib import contextmanager
from typing import Generator
from pathlib import Path

# Load .env before reading DATABASE_URL
from dotenv import load_dotenv
_env_file = Path(__file__).parent.parent.parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file, encoding='utf-8')

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session

from storefront.utils.config import get_config
from storefront.utils.logger import get_logger

logger = get_logger(__name__)


DATABASE_URL = get_config().database_url


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        # FastAPI serves sync endpoints from a threadpool
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_size": 10, "max_overflow": 10, "pool_pre_ping": True}


engine = create_engine(DATABASE_URL, echo=False, **_engine_kwargs(DATABASE_URL))


@event.listens_for(engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if DATABASE_URL.startswith("sqlite"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine
)


def get_db() -> Generator[Session, None, None]:
    """
    Dependency for FastAPI to get database session.

    Usage:
        @router.get("/items")
        def get_items(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database session.

    Usage:
        with get_db_context() as db:
            channels = db.query(MarketplaceChannel).all()
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_db() -> None:
    """Create all tables."""
    from storefront.database.models import Base

    Base.metadata.create_all(bind=engine)
    logger.info(f"Database tables created ({DATABASE_URL.split(':', 1)[0]})")
