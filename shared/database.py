"""
Database models and connection management for the investor records platform.

This module provides SQLAlchemy ORM models for versioned entity records, the
audit log, in-app notifications and the email outbox, along with database
session management.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    String,
    DateTime,
    Boolean,
    Text,
    JSON,
    Index,
    UniqueConstraint,
    text
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
import structlog

from .config import settings

logger = structlog.get_logger(__name__)

# SQLAlchemy base class
Base = declarative_base()


def utc_now() -> datetime:
    """Timezone-aware current time used for every stored timestamp."""
    return datetime.now(timezone.utc)


class EntityVersionModel(Base):
    """One immutable version of a business record (investor, property, ...)."""

    __tablename__ = "entity_versions"

    id = Column(Integer, primary_key=True, index=True)
    entity_id = Column(String(255), nullable=False)
    entity_type = Column(String(50), nullable=False)  # INVESTOR, PROPERTY, INVESTMENT, TRANSACTION
    version = Column(Integer, nullable=False)
    is_current = Column(String(20), nullable=False)  # CURRENT, HISTORICAL
    attributes = Column(JSON, nullable=False)  # Full business snapshot
    changed_fields = Column(JSON, nullable=False, default=list)
    change_reason = Column(Text, nullable=True)
    previous_version = Column(Integer, nullable=True)
    updated_by = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        UniqueConstraint('entity_id', 'version', name='uq_entity_version'),
        Index('idx_entity_current', 'entity_id', 'is_current'),
        Index('idx_entity_type_current', 'entity_type', 'is_current'),
    )

    def __repr__(self):
        return (
            f"<EntityVersionModel(entity_id='{self.entity_id}', "
            f"version={self.version}, is_current='{self.is_current}')>"
        )


class AuditLogModel(Base):
    """Append-only audit record for privileged mutations."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, index=True)
    audit_id = Column(String(64), unique=True, index=True, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    action = Column(String(100), nullable=False)  # KYC_APPROVED, ROLE_REMOVE, ...
    performed_by = Column(String(255), nullable=False)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(255), nullable=False)
    details = Column(JSON, nullable=True)
    severity = Column(String(20), nullable=False, default='INFO')  # INFO, HIGH, CRITICAL

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_timestamp', 'timestamp'),
    )

    def __repr__(self):
        return f"<AuditLogModel(action='{self.action}', entity_id='{self.entity_id}')>"


class NotificationModel(Base):
    """In-app notification shown to an investor."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    notification_id = Column(String(64), unique=True, index=True, nullable=False)
    recipient_id = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(String(50), nullable=False, default='GENERAL')
    priority = Column(String(20), nullable=False, default='NORMAL')
    link = Column(String(500), nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (
        Index('idx_notification_recipient', 'recipient_id', 'is_read'),
    )

    def __repr__(self):
        return f"<NotificationModel(recipient_id='{self.recipient_id}', title='{self.title}')>"


class EmailOutboxModel(Base):
    """Outbound email accepted for delivery."""

    __tablename__ = "email_outbox"

    id = Column(Integer, primary_key=True, index=True)
    recipient = Column(String(255), nullable=False)
    subject = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def __repr__(self):
        return f"<EmailOutboxModel(recipient='{self.recipient}', subject='{self.subject}')>"


class DatabaseManager:
    """Database connection and session management."""

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database manager."""
        self.database_url = database_url or settings.DATABASE_URL
        self.engine = None
        self.SessionLocal = None
        self._setup_database()

    def _setup_database(self):
        """Setup database engine and session factory."""
        try:
            if "sqlite" in self.database_url:
                self.engine = create_engine(
                    self.database_url,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                    echo=False
                )
            else:
                self.engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False
                )

            # expire_on_commit=False keeps returned rows readable after the scope closes
            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            logger.info("Database connection established", database_url=self.database_url)

        except Exception as e:
            logger.error("Failed to setup database", error=str(e))
            raise

    def create_tables(self):
        """Create all database tables."""
        try:
            Base.metadata.create_all(bind=self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error("Failed to create database tables", error=str(e))
            raise

    def drop_tables(self):
        """Drop all database tables."""
        try:
            Base.metadata.drop_all(bind=self.engine)
            logger.info("Database tables dropped successfully")
        except Exception as e:
            logger.error("Failed to drop database tables", error=str(e))
            raise

    def get_session(self) -> Session:
        """Get a new database session."""
        if not self.SessionLocal:
            raise RuntimeError("Database not initialized")
        return self.SessionLocal()

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

    def health_check(self) -> bool:
        """Check database connection health."""
        try:
            with self.session_scope() as session:
                session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return False


# Global database manager instance
db_manager = DatabaseManager()


def get_database() -> DatabaseManager:
    """Get the global database manager instance."""
    return db_manager


def init_database():
    """Initialize database tables."""
    db_manager.create_tables()


def cleanup_database():
    """Cleanup database resources."""
    if db_manager.engine:
        db_manager.engine.dispose()
