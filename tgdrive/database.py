"""Database setup for durable client-side storage using SQLModel"""

from typing import Optional
from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import os

from tgdrive.config import settings
from tgdrive.utils.logger import get_logger
from tgdrive.models.client_storage import StoredItem  # noqa: F401  (registers the table)

logger = get_logger(__name__)


class DatabaseService:
    """Database service for managing the SQLite client storage"""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.database_url
        self.engine: Optional[Engine] = None

    def initialize(self):
        """Initialize database connection and create tables"""
        try:
            database_url = self.database_url
            in_memory = ":memory:" in database_url

            if database_url.startswith("sqlite:///") and not in_memory:
                path = database_url.replace("sqlite:///", "", 1)
                if path.startswith("./"):
                    path = path[2:]

                # Create directory if it doesn't exist
                db_dir = os.path.dirname(path)
                if db_dir and not os.path.exists(db_dir):
                    os.makedirs(db_dir, exist_ok=True)
                    logger.debug(f"Created database directory: {db_dir}")

                normalized_path = path.replace("\\", "/")
                database_url = f"sqlite:///{normalized_path}"

            logger.debug(f"Connecting to database: {database_url.split('/')[-1]}")

            if database_url.startswith("sqlite"):
                engine_kwargs = {"poolclass": StaticPool} if in_memory else {"pool_pre_ping": True}
                self.engine = create_engine(
                    database_url,
                    connect_args={"check_same_thread": False},
                    echo=False,
                    **engine_kwargs,
                )

                if not in_memory:
                    with self.engine.connect() as conn:
                        # WAL keeps readers unblocked while the queue is being saved
                        conn.exec_driver_sql("PRAGMA journal_mode=WAL")
                        conn.exec_driver_sql("PRAGMA synchronous=NORMAL")
                        conn.commit()
            else:
                self.engine = create_engine(
                    database_url,
                    echo=False,
                    pool_pre_ping=True,
                    pool_recycle=3600,
                )

            SQLModel.metadata.create_all(self.engine)
            logger.debug("Client storage database initialized")
        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def get_session(self) -> Session:
        """Get database session"""
        if not self.engine:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return Session(self.engine)

    async def health_check(self) -> bool:
        """Check database health"""
        try:
            with self.get_session() as session:
                session.connection().exec_driver_sql("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self):
        """Close database connection"""
        if self.engine:
            self.engine.dispose()
            self.engine = None
            logger.debug("Database connection closed")
