"""
Outbound integrations consumed by the KYC workflow and bulk operations.

This module provides the in-app notification dispatcher, the email dispatcher
with a pluggable transport, and the document-verification provider whose
outcome is used as an optional hint during KYC review.
"""

import threading
import uuid
from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field
import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from .config import settings
from .database import DatabaseManager, EmailOutboxModel, NotificationModel

logger = structlog.get_logger(__name__)


class DispatchError(Exception):
    """Raised when a message could not be handed to its delivery channel."""
    pass


class Notification(BaseModel):
    """In-app notification payload."""
    recipient_id: str = Field(..., description="Investor receiving the notification")
    title: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    notification_type: str = Field("GENERAL", description="Notification category")
    priority: str = Field("NORMAL", description="LOW, NORMAL or HIGH")
    link: Optional[str] = Field(None, description="Relative link opened by the notification")


class EmailMessage(BaseModel):
    """Outbound email payload."""
    recipient: str
    subject: str
    body: str


class NotificationDispatcher:
    """Persists in-app notifications for investors."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    @retry(
        stop=stop_after_attempt(settings.DISPATCH_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=2),
        retry=retry_if_exception_type(DispatchError),
        reraise=True
    )
    def dispatch(self, notification: Notification) -> str:
        """Store a notification and return its identifier."""
        notification_id = uuid.uuid4().hex
        try:
            with self.db_manager.session_scope() as session:
                session.add(NotificationModel(
                    notification_id=notification_id,
                    recipient_id=notification.recipient_id,
                    title=notification.title,
                    message=notification.message,
                    notification_type=notification.notification_type,
                    priority=notification.priority,
                    link=notification.link,
                ))
        except Exception as e:
            logger.warning("Notification dispatch failed",
                           recipient_id=notification.recipient_id,
                           error=str(e))
            raise DispatchError(f"Failed to store notification: {e}") from e

        logger.info("Notification dispatched",
                    notification_id=notification_id,
                    recipient_id=notification.recipient_id)
        return notification_id


class OutboxTransport:
    """Default email transport: writes messages to the email outbox table."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def __call__(self, message: EmailMessage) -> None:
        try:
            with self.db_manager.session_scope() as session:
                session.add(EmailOutboxModel(
                    recipient=message.recipient,
                    subject=message.subject,
                    body=message.body,
                ))
        except Exception as e:
            raise DispatchError(f"Failed to queue email: {e}") from e


class EmailDispatcher:
    """Sends emails through a transport, retrying transient failures."""

    def __init__(self, transport: Callable[[EmailMessage], None], from_address: Optional[str] = None):
        self.transport = transport
        self.from_address = from_address or settings.FROM_EMAIL

    @retry(
        stop=stop_after_attempt(settings.DISPATCH_RETRY_ATTEMPTS),
        wait=wait_exponential(multiplier=0.1, max=2),
        retry=retry_if_exception_type(DispatchError),
        reraise=True
    )
    def send(self, recipient: str, subject: str, body: str) -> None:
        if not recipient:
            raise ValueError("Email recipient is required")

        self.transport(EmailMessage(recipient=recipient, subject=subject, body=body))

        logger.info("Email sent", recipient=recipient, subject=subject)


class VerificationOutcome(Enum):
    """Classification reported by the document-verification provider."""
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    IN_PROGRESS = "IN_PROGRESS"


class DocumentVerificationProvider:
    """
    Latest automated document-verification outcome per investor.

    Outcomes arrive through the KYC verification-outcome route and are
    surfaced as hints in the review queue and decision audit records.
    """

    def __init__(self):
        self._outcomes: Dict[str, VerificationOutcome] = {}
        self._lock = threading.Lock()

    def record_outcome(self, investor_id: str, outcome: VerificationOutcome) -> None:
        with self._lock:
            self._outcomes[investor_id] = outcome
        logger.info("Verification outcome recorded", investor_id=investor_id, outcome=outcome.value)

    def get_outcome(self, investor_id: str) -> Optional[VerificationOutcome]:
        return self._outcomes.get(investor_id)
