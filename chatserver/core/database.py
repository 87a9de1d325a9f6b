"""
Database connection and session management.
"""
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from chatserver.core.config import get_settings
from chatserver.core.logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_SessionLocal = None


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine, preparing the SQLite file location when needed."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

        # sqlite:///./path/to/db.db -> make sure ./path/to exists
        db_path = database_url.replace("sqlite:///", "")
        if db_path.startswith("./"):
            db_path = db_path[2:]
        if db_path and db_path != ":memory:":
            db_dir = Path(db_path).parent
            if db_dir and not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=echo,
        pool_pre_ping=True,
    )

    return engine


def get_engine() -> Engine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url, echo=settings.debug)
        logger.info("Database engine created", extra={"extra_data": {"database_url": settings.database_url}})
    return _engine


def get_session_factory():
    """Get or create the session factory."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine()
        )
    return _SessionLocal


def get_db() -> Generator[Session, None, None]:
    """Dependency to get database session."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """Context manager to get database session."""
    SessionLocal = get_session_factory()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(engine: Optional[Engine] = None) -> None:
    """Initialize database tables."""
    from chatserver.models import message  # noqa: F401 - Import to register models

    Base.metadata.create_all(bind=engine or get_engine())
    logger.info("Database tables created")


def check_db_connection(db: Optional[Session] = None) -> bool:
    """Check if database is reachable, through `db` when one is given."""
    try:
        if db is not None:
            db.execute(text("SELECT 1"))
        else:
            with get_engine().connect() as conn:
                conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
