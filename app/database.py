from typing import Optional

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool
from app.config import settings
from app.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


class Database:
    """
    Owns the engine and session factory for one process.

    Created once at application start, attached to ``app.state.db`` and disposed
    at shutdown. Nothing in the application reaches for a module-level engine.
    """

    def __init__(self, url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            engine = create_engine(
                url or settings.DATABASE_URL,
                poolclass=QueuePool,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_pre_ping=True,  # Validate connections before use
                echo=settings.DEBUG,
            )
            logger.info(
                f"Database pool configured: size={settings.DB_POOL_SIZE}, "
                f"max_overflow={settings.DB_MAX_OVERFLOW}, timeout={settings.DB_POOL_TIMEOUT}s"
            )
        self.engine = engine
        self.session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
        )

    def create_all(self) -> None:
        # Importing the models registers their tables on Base.metadata
        import app.models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def session(self) -> Session:
        return self.session_factory()

    def pool_status(self) -> dict:
        """Current connection pool status, for health checks and debugging."""
        pool = self.engine.pool
        status = {"pool_type": type(pool).__name__}
        if isinstance(pool, QueuePool):
            status.update({
                "pool_size": pool.size(),
                "checked_in": pool.checkedin(),
                "checked_out": pool.checkedout(),
                "overflow": pool.overflow(),
            })
        return status

    def dispose(self) -> None:
        logger.info("Disposing database connection pool")
        self.engine.dispose()


def get_db(request: Request):
    """
    Database dependency for FastAPI.
    Provides a session bound to the application's Database with automatic cleanup.
    """
    database: Database = request.app.state.db
    db = database.session()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()
