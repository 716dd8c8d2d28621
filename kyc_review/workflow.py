"""
KYC review workflow.

Every transition is one commit on the investor record made on behalf of the
caller with the System role, so workflow-managed fields pass the field policy
while the caller's identity is kept on the version. External effects
(audit record, access-group elevation, notification, email) run after the
commit succeeds; their failures are logged and never undo the transition.
"""

from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, Optional, Tuple

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from shared.audit import AuditSeverity, AuditTrail
from shared.auth import (
    Actor,
    IdentityDirectory,
    Role,
    ADMIN_ROLES,
    COMPLIANCE_ROLES,
    identity_directory,
    workflow_actor,
)
from shared.config import settings
from shared.database import db_manager, utc_now
from shared.errors import ConcurrentModificationError, ForbiddenError, ValidationError
from shared.integrations import (
    DocumentVerificationProvider,
    EmailDispatcher,
    Notification,
    NotificationDispatcher,
    OutboxTransport,
    VerificationOutcome,
)
from record_versioning.models import AccountStatus, EntityType, EntityVersion
from record_versioning.service import record_service, is_owner
from record_versioning.store import VersionedStore

from .models import (
    KYCStatus,
    TERMINAL_STATUSES,
    IdentityDocument,
    ProofOfAddress,
    ReviewQueue,
    ReviewQueueItem,
    VerificationOutcomeResponse,
    can_transition,
)

logger = structlog.get_logger(__name__)

# (patch, change reason) computed from the freshly read current version
Decision = Tuple[Dict[str, Any], Optional[str]]

conflict_retry = retry(
    stop=stop_after_attempt(settings.CONFLICT_RETRY_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, max=1),
    retry=retry_if_exception_type(ConcurrentModificationError),
    reraise=True
)


def kyc_status_of(version: EntityVersion) -> KYCStatus:
    value = version.get("kyc_status", KYCStatus.PENDING.value)
    try:
        return KYCStatus(value)
    except ValueError:
        raise ValidationError(f"Investor {version.entity_id} has unknown KYC status {value!r}")


def approval_reason(reviewer: Actor, notes: Optional[str] = None) -> str:
    """Approval change reason; notes are cut to fit the reason length limit."""
    reason = f"KYC approved by {reviewer.actor_name}."
    notes = (notes or "").strip()
    if notes:
        room = max(settings.CHANGE_REASON_MAX_LENGTH - len(reason) - 1, 0)
        reason = f"{reason} {notes[:room]}".rstrip()
    return reason


def _check_transition(source: KYCStatus, target: KYCStatus) -> None:
    if source == target and source in TERMINAL_STATUSES:
        raise ValidationError(f"KYC already {source.value.lower()}")
    if not can_transition(source, target):
        raise ValidationError(f"Cannot change KYC status from {source.value} to {target.value}")


def _clear(current: EntityVersion, names: Iterable[str]) -> Dict[str, Any]:
    """Patch resetting the given attributes, skipping ones already empty."""
    return {name: None for name in names if current.get(name) is not None}


class KYCWorkflow:
    """State machine over an investor's verification status."""

    def __init__(
        self,
        store: VersionedStore,
        audit: AuditTrail,
        notifications: NotificationDispatcher,
        emails: EmailDispatcher,
        identity: IdentityDirectory,
        verification: Optional[DocumentVerificationProvider] = None,
    ):
        self.store = store
        self.audit = audit
        self.notifications = notifications
        self.emails = emails
        self.identity = identity
        self.verification = verification

    # Commit plumbing

    @conflict_retry
    def _commit(
        self,
        investor_id: str,
        actor: Actor,
        decide: Callable[[EntityVersion, KYCStatus], Decision],
        min_reason_length: Optional[int] = None,
    ) -> Tuple[EntityVersion, EntityVersion]:
        """Read, decide and commit; retried from a fresh read on conflicts."""
        current = self.store.get_current(investor_id, EntityType.INVESTOR)
        patch, reason = decide(current, kyc_status_of(current))

        committed = self.store.commit(
            investor_id,
            patch,
            workflow_actor(actor),
            supplied_reason=reason,
            entity_type=EntityType.INVESTOR,
            expected_version=current.version,
            min_reason_length=min_reason_length,
        )
        return current, committed

    def _require_reviewer(self, reviewer: Actor, action: str) -> None:
        if not reviewer.has_any_role(COMPLIANCE_ROLES | {Role.SYSTEM}):
            logger.warning("KYC action forbidden", action=action, actor_id=reviewer.actor_id)
            raise ForbiddenError(f"Only compliance or admin staff can {action}")

    def _require_owner_or_admin(self, investor_id: str, actor: Actor) -> None:
        if actor.has_any_role(ADMIN_ROLES | {Role.SYSTEM}):
            return
        current = self.store.get_current(investor_id, EntityType.INVESTOR)
        if not is_owner(actor, current):
            raise ForbiddenError(f"Not allowed to submit documents for investor {investor_id}")

    def _run_effect(self, effect: str, investor_id: str, func: Callable, *args, **kwargs) -> None:
        try:
            func(*args, **kwargs)
        except Exception as e:
            logger.error("KYC side effect failed",
                         effect=effect,
                         investor_id=investor_id,
                         error=str(e))

    def _notify(self, investor: EntityVersion, title: str, message: str,
                notification_type: str, link: Optional[str] = None, priority: str = "HIGH") -> None:
        self._run_effect("notification", investor.entity_id, self.notifications.dispatch, Notification(
            recipient_id=investor.entity_id,
            title=title,
            message=message,
            notification_type=notification_type,
            priority=priority,
            link=link,
        ))

    def _email(self, investor: EntityVersion, subject: str, body: str) -> None:
        email = investor.get("email")
        if not email:
            logger.warning("Investor has no email address", investor_id=investor.entity_id)
            return
        self._run_effect("email", investor.entity_id, self.emails.send, email, subject, body)

    def _audit(self, action: str, reviewer: Actor, investor_id: str, details: Dict[str, Any]) -> None:
        self._run_effect("audit", investor_id, self.audit.record,
                         action=action,
                         performed_by=reviewer.identity,
                         entity_type=EntityType.INVESTOR.value,
                         entity_id=investor_id,
                         details=details,
                         severity=AuditSeverity.HIGH)

    def _verification_hint(self, investor_id: str, decision: KYCStatus) -> Optional[str]:
        if self.verification is None:
            return None
        outcome = self.verification.get_outcome(investor_id)
        if outcome is None:
            return None
        if outcome.value != decision.value:
            logger.warning("Verification outcome disagrees with decision",
                           investor_id=investor_id,
                           outcome=outcome.value,
                           decision=decision.value)
        return outcome.value

    # Document submission

    def submit_identity_document(self, investor_id: str, actor: Actor, document: IdentityDocument) -> EntityVersion:
        """
        Store an identity document and move the investor into review.

        PENDING moves to IN_PROGRESS and MORE_INFO_REQUIRED back to PENDING.
        """
        self._require_owner_or_admin(investor_id, actor)
        if document.expiry_date <= date.today():
            raise ValidationError("Identity document has expired")

        submission = document.model_dump(mode="json")
        submission.update({"status": "SUBMITTED", "submitted_at": utc_now().isoformat()})

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            if status in TERMINAL_STATUSES:
                raise ValidationError(f"KYC already {status.value.lower()}; a new verification cycle is required")

            patch: Dict[str, Any] = {"identity_verification": submission}
            if status == KYCStatus.PENDING:
                patch["kyc_status"] = KYCStatus.IN_PROGRESS.value
            elif status == KYCStatus.MORE_INFO_REQUIRED:
                patch["kyc_status"] = KYCStatus.PENDING.value
            return patch, f"Identity document submitted by {actor.identity}"

        _, committed = self._commit(investor_id, actor, decide)
        logger.info("Identity document submitted",
                    investor_id=investor_id,
                    kyc_status=committed.get("kyc_status"))
        return committed

    def submit_proof_of_address(self, investor_id: str, actor: Actor, proof: ProofOfAddress) -> EntityVersion:
        """Store a proof of address; MORE_INFO_REQUIRED moves back to PENDING."""
        self._require_owner_or_admin(investor_id, actor)

        submission = proof.model_dump(mode="json")
        submission.update({"status": "SUBMITTED", "submitted_at": utc_now().isoformat()})

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            if status in TERMINAL_STATUSES:
                raise ValidationError(f"KYC already {status.value.lower()}; a new verification cycle is required")

            patch: Dict[str, Any] = {"proof_of_address": submission}
            if status == KYCStatus.MORE_INFO_REQUIRED:
                patch["kyc_status"] = KYCStatus.PENDING.value
            return patch, f"Proof of address submitted by {actor.identity}"

        _, committed = self._commit(investor_id, actor, decide)
        logger.info("Proof of address submitted", investor_id=investor_id)
        return committed

    # Review transitions

    def start_review(self, investor_id: str, reviewer: Actor) -> EntityVersion:
        self._require_reviewer(reviewer, "start KYC reviews")

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            _check_transition(status, KYCStatus.IN_PROGRESS)
            return ({"kyc_status": KYCStatus.IN_PROGRESS.value},
                    f"KYC review started by {reviewer.actor_name}")

        _, committed = self._commit(investor_id, reviewer, decide)
        logger.info("KYC review started", investor_id=investor_id, reviewer=reviewer.actor_id)
        return committed

    def approve(self, investor_id: str, reviewer: Actor, notes: Optional[str] = None) -> EntityVersion:
        """
        Approve an investor's KYC.

        Raises:
            ForbiddenError: If the reviewer is not compliance or admin staff
            ValidationError: If the investor is already approved or has not
                submitted both an identity document and a proof of address
        """
        self._require_reviewer(reviewer, "approve KYC")

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            _check_transition(status, KYCStatus.APPROVED)
            if not current.get("identity_verification") or not current.get("proof_of_address"):
                raise ValidationError("Documents not submitted: identity document and proof of address are required")

            now = utc_now()
            patch = {
                "kyc_status": KYCStatus.APPROVED.value,
                "account_status": AccountStatus.ACTIVE.value,
                "verification_level": "FULLY_VERIFIED",
                "kyc_verified_date": now.isoformat(),
                "kyc_expiry_date": (now + timedelta(days=settings.KYC_VALIDITY_DAYS)).isoformat(),
                "kyc_reviewed_by": reviewer.identity,
            }
            patch.update(_clear(current, ["kyc_rejection_reason"]))
            return patch, approval_reason(reviewer, notes)

        previous, committed = self._commit(investor_id, reviewer, decide)

        self._audit("KYC_APPROVED", reviewer, investor_id, {
            "previous_status": kyc_status_of(previous).value,
            "new_status": KYCStatus.APPROVED.value,
            "notes": notes,
            "kyc_cycle": committed.get("kyc_cycle"),
            "verification_hint": self._verification_hint(investor_id, KYCStatus.APPROVED),
        })

        owner_id = committed.get("owner_id")
        if owner_id:
            self._run_effect("group_elevation", investor_id,
                             self.identity.add_to_group, owner_id, Role.VERIFIED_INVESTOR)

        self._notify(committed,
                     title="KYC Verification Complete!",
                     message="Your identity has been verified. You can now start investing in properties.",
                     notification_type="KYC_APPROVED",
                     link="/dashboard/investments")
        self._email(committed,
                    subject="Your account is verified",
                    body=(f"Hello {committed.get('first_name', '')},\n\n"
                          "Your identity verification is complete and your account is now active.\n"
                          f"Start investing at {settings.APP_URL}/dashboard/investments"))

        logger.info("KYC approved", investor_id=investor_id, reviewer=reviewer.actor_id)
        return committed

    def reject(
        self,
        investor_id: str,
        reviewer: Actor,
        reason: str,
        min_reason_length: Optional[int] = None,
    ) -> EntityVersion:
        """Reject an investor's KYC with a reason shown to the investor."""
        self._require_reviewer(reviewer, "reject KYC")
        reason = self.store.reason_policy.validate_reason(reason, ["kyc_status"], min_reason_length)

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            _check_transition(status, KYCStatus.REJECTED)
            return ({
                "kyc_status": KYCStatus.REJECTED.value,
                "kyc_rejection_reason": reason,
                "kyc_reviewed_by": reviewer.identity,
            }, reason)

        previous, committed = self._commit(investor_id, reviewer, decide, min_reason_length)

        self._audit("KYC_REJECTED", reviewer, investor_id, {
            "previous_status": kyc_status_of(previous).value,
            "new_status": KYCStatus.REJECTED.value,
            "reason": reason,
            "kyc_cycle": committed.get("kyc_cycle"),
            "verification_hint": self._verification_hint(investor_id, KYCStatus.REJECTED),
        })

        resubmit_link = f"{settings.APP_URL}/kyc/resubmit"
        self._notify(committed,
                     title="KYC Verification Unsuccessful",
                     message=f"We could not verify your identity: {reason}",
                     notification_type="KYC_REJECTED",
                     link="/kyc/resubmit")
        self._email(committed,
                    subject="Identity verification unsuccessful",
                    body=(f"Hello {committed.get('first_name', '')},\n\n"
                          f"We were unable to verify your identity.\n\nReason: {reason}\n\n"
                          f"You can submit new documents at {resubmit_link}"))

        logger.info("KYC rejected", investor_id=investor_id, reviewer=reviewer.actor_id)
        return committed

    def request_more_info(self, investor_id: str, reviewer: Actor, message: str) -> EntityVersion:
        """Ask the investor for more information; the message is stored on the record."""
        self._require_reviewer(reviewer, "request more KYC information")
        message = self.store.reason_policy.validate_reason(message, ["kyc_status"])

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            _check_transition(status, KYCStatus.MORE_INFO_REQUIRED)
            return ({
                "kyc_status": KYCStatus.MORE_INFO_REQUIRED.value,
                "kyc_rejection_reason": message,
                "kyc_reviewed_by": reviewer.identity,
            }, message)

        previous, committed = self._commit(investor_id, reviewer, decide)

        self._audit("KYC_MORE_INFO_REQUESTED", reviewer, investor_id, {
            "previous_status": kyc_status_of(previous).value,
            "new_status": KYCStatus.MORE_INFO_REQUIRED.value,
            "message": message,
        })
        self._notify(committed,
                     title="Additional Information Required",
                     message=message,
                     notification_type="KYC_MORE_INFO",
                     link="/kyc/resubmit")
        self._email(committed,
                    subject="We need more information to verify your identity",
                    body=(f"Hello {committed.get('first_name', '')},\n\n{message}\n\n"
                          f"Please resubmit your documents at {settings.APP_URL}/kyc/resubmit"))

        logger.info("More KYC information requested", investor_id=investor_id, reviewer=reviewer.actor_id)
        return committed

    def start_new_cycle(self, investor_id: str, reviewer: Actor, reason: str) -> EntityVersion:
        """
        Start a fresh verification cycle for an approved or rejected investor.

        The cycle counter is incremented and the previous cycle's documents and
        rejection reason are cleared; earlier versions keep them for audit.
        """
        self._require_reviewer(reviewer, "start a new KYC cycle")
        reason = self.store.reason_policy.validate_reason(reason, ["kyc_status"])

        def decide(current: EntityVersion, status: KYCStatus) -> Decision:
            if status not in TERMINAL_STATUSES:
                raise ValidationError(f"KYC cycle still open with status {status.value}")
            patch = {
                "kyc_status": KYCStatus.PENDING.value,
                "kyc_cycle": int(current.get("kyc_cycle") or 1) + 1,
            }
            patch.update(_clear(current, [
                "identity_verification",
                "proof_of_address",
                "kyc_rejection_reason",
                "kyc_reviewed_by",
            ]))
            return patch, reason

        previous, committed = self._commit(investor_id, reviewer, decide)

        self._audit("KYC_CYCLE_STARTED", reviewer, investor_id, {
            "previous_status": kyc_status_of(previous).value,
            "kyc_cycle": committed.get("kyc_cycle"),
            "reason": reason,
        })
        self._notify(committed,
                     title="Identity Verification Required",
                     message="Please submit up-to-date identity documents to keep your account verified.",
                     notification_type="KYC_REVERIFICATION",
                     link="/kyc")

        logger.info("KYC cycle started", investor_id=investor_id, kyc_cycle=committed.get("kyc_cycle"))
        return committed

    # Automated verification

    def record_verification_outcome(
        self,
        investor_id: str,
        reporter: Actor,
        outcome: VerificationOutcome,
        provider: str = "default",
    ) -> VerificationOutcomeResponse:
        """
        Store the automated document-verification result for an investor.

        The outcome is advisory: it is shown in the review queue and audit
        details but never changes the KYC status itself.
        """
        self._require_reviewer(reporter, "record verification outcomes")
        if self.verification is None:
            raise ValidationError("No document verification provider is configured")

        self.store.get_current(investor_id, EntityType.INVESTOR)
        self.verification.record_outcome(investor_id, outcome)

        self._run_effect("audit", investor_id, self.audit.record,
                         action="KYC_VERIFICATION_OUTCOME",
                         performed_by=reporter.identity,
                         entity_type=EntityType.INVESTOR.value,
                         entity_id=investor_id,
                         details={"outcome": outcome.value, "provider": provider},
                         severity=AuditSeverity.INFO)

        return VerificationOutcomeResponse(
            investor_id=investor_id,
            outcome=outcome,
            provider=provider,
            recorded_by=reporter.identity,
            recorded_at=utc_now(),
        )

    # Queue

    def get_review_queue(self, reviewer: Actor) -> ReviewQueue:
        """Investors awaiting review, bucketed by status, oldest update first."""
        self._require_reviewer(reviewer, "view the KYC review queue")

        buckets = {
            KYCStatus.PENDING: [],
            KYCStatus.IN_PROGRESS: [],
            KYCStatus.MORE_INFO_REQUIRED: [],
        }
        for investor in self.store.list_current(EntityType.INVESTOR):
            try:
                status = kyc_status_of(investor)
            except ValidationError:
                logger.error("Skipping investor with unknown KYC status",
                             investor_id=investor.entity_id,
                             kyc_status=investor.get("kyc_status"))
                continue
            if status not in buckets:
                continue

            outcome = self.verification.get_outcome(investor.entity_id) if self.verification else None
            buckets[status].append(ReviewQueueItem(
                investor_id=investor.entity_id,
                name=f"{investor.get('first_name', '')} {investor.get('last_name', '')}".strip(),
                email=investor.get("email"),
                kyc_status=status,
                kyc_cycle=investor.get("kyc_cycle") or 1,
                updated_at=investor.updated_at,
                identity_document_submitted=bool(investor.get("identity_verification")),
                proof_of_address_submitted=bool(investor.get("proof_of_address")),
                verification_hint=outcome.value if outcome else None,
            ))

        for items in buckets.values():
            items.sort(key=lambda item: item.updated_at)

        return ReviewQueue(
            pending=buckets[KYCStatus.PENDING],
            in_progress=buckets[KYCStatus.IN_PROGRESS],
            requires_more_info=buckets[KYCStatus.MORE_INFO_REQUIRED],
            total_count=sum(len(items) for items in buckets.values()),
        )


# Global instances
verification_provider = DocumentVerificationProvider()
kyc_workflow = KYCWorkflow(
    store=record_service.store,
    audit=AuditTrail(db_manager),
    notifications=NotificationDispatcher(db_manager),
    emails=EmailDispatcher(OutboxTransport(db_manager)),
    identity=identity_directory,
    verification=verification_provider,
)
