"""
Database connection and session management
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

from .models import Base, TransactionModel
from ..config import get_settings

logger = logging.getLogger(__name__)


class Database:
    """One engine per ledger store; sessions commit on clean exit"""

    def __init__(self, db_url: str = None):
        self.db_url = db_url or get_settings().database_url
        if self.db_url.startswith("sqlite"):
            # Request handlers and the TestClient run on different threads
            self.engine = create_engine(
                self.db_url,
                connect_args={"check_same_thread": False},
                echo=False
            )
        else:
            self.engine = create_engine(self.db_url, echo=False, pool_pre_ping=True)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=self.engine
        )

    def create_tables(self):
        """Create the ledger tables if they are missing"""
        Base.metadata.create_all(bind=self.engine)
        logger.debug(f"Ledger tables ready on {self.engine.url.render_as_string(hide_password=True)}")

    def has_transactions(self) -> bool:
        with self.get_session() as session:
            return session.query(TransactionModel.id).first() is not None

    @contextmanager
    def get_session(self) -> Session:
        """Context manager for database sessions"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Global database instance
_db_instance = None


def get_db() -> Database:
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
        _db_instance.create_tables()
    return _db_instance


def use_db(db: Optional[Database]) -> Optional[Database]:
    """Swap the global instance (tests, scripts); returns the previous one"""
    global _db_instance
    previous = _db_instance
    _db_instance = db
    return previous
