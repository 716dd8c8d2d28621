"""
Bulk administrative operations.

A bulk operation applies one per-record operation to a list of ids. Each id
succeeds or fails on its own; failures are collected into the aggregate result
and never abort the remaining ids. Only the up-front authorization and input
checks can fail the whole call.
"""

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional

import structlog

from shared.audit import AuditSeverity, AuditTrail
from shared.auth import (
    Actor,
    IdentityDirectory,
    Role,
    ADMIN_ROLES,
    COMPLIANCE_ROLES,
    identity_directory,
)
from shared.config import settings
from shared.database import db_manager, utc_now
from shared.errors import ForbiddenError, RecordsError, ValidationError
from shared.integrations import Notification, NotificationDispatcher
from kyc_review.workflow import KYCWorkflow, kyc_workflow
from record_versioning.models import AccountStatus, EntityType
from record_versioning.store import VersionedStore

from .models import BulkError, BulkOperationResult

logger = structlog.get_logger(__name__)


def normalize_ids(ids: Iterable[str], max_ids: Optional[int] = None) -> List[str]:
    """De-duplicate ids preserving order and enforce the batch cap."""
    limit = max_ids or settings.BULK_MAX_IDS
    unique = list(dict.fromkeys(i.strip() for i in ids if i and i.strip()))
    if not unique:
        raise ValidationError("At least one id is required")
    if len(unique) > limit:
        raise ValidationError(f"Too many ids: {len(unique)} (maximum {limit})")
    return unique


class ResultCollector:
    """Thread-safe accumulator shared by bulk workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._successes = 0
        self._errors: List[BulkError] = []

    def success(self, item_id: str) -> None:
        with self._lock:
            self._successes += 1

    def failure(self, item_id: str, error: str) -> None:
        with self._lock:
            self._errors.append(BulkError(id=item_id, error=error))

    def result(self) -> BulkOperationResult:
        with self._lock:
            return BulkOperationResult(
                total_processed=self._successes + len(self._errors),
                success_count=self._successes,
                failure_count=len(self._errors),
                errors=list(self._errors),
            )


class BulkOperationRunner:
    """Runs a per-id operation across ids with per-id failure isolation."""

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = max_workers or settings.BULK_MAX_WORKERS

    def _apply(self, item_id: str, operation: Callable[[str], object], collector: ResultCollector) -> None:
        try:
            operation(item_id)
        except RecordsError as e:
            logger.warning("Bulk item failed", item_id=item_id, error=e.message)
            collector.failure(item_id, e.message)
        except Exception as e:
            logger.error("Bulk item failed unexpectedly", item_id=item_id, error=str(e))
            collector.failure(item_id, str(e) or e.__class__.__name__)
        else:
            collector.success(item_id)

    def run(self, ids: Iterable[str], operation: Callable[[str], object]) -> BulkOperationResult:
        collector = ResultCollector()
        ids = list(ids)

        if self.max_workers <= 1:
            for item_id in ids:
                self._apply(item_id, operation, collector)
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                for item_id in ids:
                    executor.submit(self._apply, item_id, operation, collector)

        result = collector.result()
        logger.info("Bulk operation finished",
                    total=result.total_processed,
                    succeeded=result.success_count,
                    failed=result.failure_count)
        return result


class BulkOperations:
    """Bulk KYC decisions, account suspensions and notifications."""

    def __init__(
        self,
        workflow: KYCWorkflow,
        store: VersionedStore,
        notifications: NotificationDispatcher,
        identity: IdentityDirectory,
        audit: AuditTrail,
        runner: Optional[BulkOperationRunner] = None,
    ):
        self.workflow = workflow
        self.store = store
        self.notifications = notifications
        self.identity = identity
        self.audit = audit
        self.runner = runner or BulkOperationRunner()

    def _require(self, actor: Actor, roles, action: str) -> None:
        if not actor.has_any_role(set(roles) | {Role.SYSTEM}):
            logger.warning("Bulk operation forbidden", action=action, actor_id=actor.actor_id)
            raise ForbiddenError(f"Not allowed to {action}")

    def _record_summary(self, action: str, actor: Actor, ids: List[str],
                        result: BulkOperationResult, **details) -> None:
        try:
            self.audit.record(
                action=action,
                performed_by=actor.identity,
                entity_type="BULK_OPERATION",
                entity_id=uuid.uuid4().hex,
                details={
                    "ids": ids,
                    "success_count": result.success_count,
                    "failure_count": result.failure_count,
                    **details,
                },
                severity=AuditSeverity.HIGH,
            )
        except Exception as e:
            logger.error("Failed to audit bulk operation", action=action, error=str(e))

    def bulk_approve_kyc(self, actor: Actor, ids: Iterable[str], notes: Optional[str] = None) -> BulkOperationResult:
        self._require(actor, COMPLIANCE_ROLES, "approve KYC")
        ids = normalize_ids(ids)

        logger.info("Bulk KYC approval started", actor_id=actor.actor_id, count=len(ids))
        result = self.runner.run(ids, lambda investor_id: self.workflow.approve(investor_id, actor, notes))
        self._record_summary("BULK_KYC_APPROVE", actor, ids, result, notes=notes)
        return result

    def bulk_reject_kyc(self, actor: Actor, ids: Iterable[str], reason: str) -> BulkOperationResult:
        self._require(actor, COMPLIANCE_ROLES, "reject KYC")
        min_length = settings.BULK_REJECTION_REASON_MIN_LENGTH
        reason = self.store.reason_policy.validate_reason(reason, ["kyc_status"], min_length)
        ids = normalize_ids(ids)

        logger.info("Bulk KYC rejection started", actor_id=actor.actor_id, count=len(ids))
        result = self.runner.run(
            ids,
            lambda investor_id: self.workflow.reject(investor_id, actor, reason, min_reason_length=min_length)
        )
        self._record_summary("BULK_KYC_REJECT", actor, ids, result, reason=reason)
        return result

    def _suspend(self, investor_id: str, actor: Actor, reason: str) -> None:
        current = self.store.get_current(investor_id, EntityType.INVESTOR)
        if current.get("account_status") == AccountStatus.SUSPENDED.value:
            raise ValidationError("Account already suspended")

        committed = self.store.commit(
            investor_id,
            {
                "account_status": AccountStatus.SUSPENDED.value,
                "suspension_reason": reason,
                "suspended_at": utc_now().isoformat(),
                "suspended_by": actor.identity,
            },
            actor,
            supplied_reason=reason,
            entity_type=EntityType.INVESTOR,
            expected_version=current.version,
            min_reason_length=settings.SUSPENSION_REASON_MIN_LENGTH,
        )

        owner_id = committed.get("owner_id")
        if owner_id:
            try:
                self.identity.disable_actor(owner_id)
            except KeyError as e:
                logger.error("Failed to disable suspended investor", investor_id=investor_id, error=str(e))

    def bulk_suspend_accounts(self, actor: Actor, ids: Iterable[str], reason: str) -> BulkOperationResult:
        self._require(actor, ADMIN_ROLES, "suspend accounts")
        reason = self.store.reason_policy.validate_reason(
            reason, ["account_status"], settings.SUSPENSION_REASON_MIN_LENGTH
        )
        ids = normalize_ids(ids)

        logger.info("Bulk suspension started", actor_id=actor.actor_id, count=len(ids))
        result = self.runner.run(ids, lambda investor_id: self._suspend(investor_id, actor, reason))
        self._record_summary("BULK_ACCOUNT_SUSPEND", actor, ids, result, reason=reason)
        return result

    def bulk_send_notification(
        self,
        actor: Actor,
        ids: Iterable[str],
        title: str,
        message: str,
        notification_type: str = "GENERAL",
        priority: str = "NORMAL",
        link: Optional[str] = None,
    ) -> BulkOperationResult:
        self._require(actor, ADMIN_ROLES, "send bulk notifications")
        ids = normalize_ids(ids)

        def notify(investor_id: str) -> None:
            self.store.get_current(investor_id, EntityType.INVESTOR)
            self.notifications.dispatch(Notification(
                recipient_id=investor_id,
                title=title,
                message=message,
                notification_type=notification_type,
                priority=priority,
                link=link,
            ))

        logger.info("Bulk notification started", actor_id=actor.actor_id, count=len(ids))
        result = self.runner.run(ids, notify)
        self._record_summary("BULK_NOTIFICATION", actor, ids, result, title=title)
        return result


# Global instance
bulk_operations = BulkOperations(
    workflow=kyc_workflow,
    store=kyc_workflow.store,
    notifications=kyc_workflow.notifications,
    identity=identity_directory,
    audit=AuditTrail(db_manager),
)
