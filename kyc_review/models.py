"""
KYC review Pydantic models and the verification status state machine.
"""

from datetime import date, datetime
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from shared.integrations import VerificationOutcome
from record_versioning.models import KYCStatus


# APPROVED and REJECTED end a cycle; a new cycle is started explicitly
ALLOWED_TRANSITIONS: Dict[KYCStatus, FrozenSet[KYCStatus]] = {
    KYCStatus.PENDING: frozenset({
        KYCStatus.IN_PROGRESS,
        KYCStatus.APPROVED,
        KYCStatus.REJECTED,
        KYCStatus.MORE_INFO_REQUIRED,
    }),
    KYCStatus.IN_PROGRESS: frozenset({
        KYCStatus.APPROVED,
        KYCStatus.REJECTED,
        KYCStatus.MORE_INFO_REQUIRED,
    }),
    KYCStatus.MORE_INFO_REQUIRED: frozenset({KYCStatus.PENDING}),
    KYCStatus.APPROVED: frozenset(),
    KYCStatus.REJECTED: frozenset(),
}

TERMINAL_STATUSES = frozenset({KYCStatus.APPROVED, KYCStatus.REJECTED})


def can_transition(source: KYCStatus, target: KYCStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


class IdentityDocument(BaseModel):
    """Identity document submitted by an investor."""
    document_type: str = Field(..., min_length=1, description="PASSPORT, DRIVING_LICENCE or NATIONAL_ID")
    document_number: str = Field(..., min_length=1, max_length=100)
    issuing_country: str = Field(..., min_length=2, max_length=100)
    expiry_date: date = Field(..., description="Document expiry date, must be in the future")
    document_images: List[str] = Field(..., min_length=1, description="Stored image references")


class ProofOfAddress(BaseModel):
    """Proof of address submitted by an investor."""
    document_type: str = Field(..., min_length=1, description="UTILITY_BILL, BANK_STATEMENT, ...")
    issue_date: Optional[date] = Field(None, description="Date the document was issued")
    document_images: List[str] = Field(..., min_length=1, description="Stored image references")


class ApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500, description="Reviewer notes")


class RejectRequest(BaseModel):
    reason: str = Field(..., description="Rejection reason shown to the investor")


class MoreInfoRequest(BaseModel):
    message: str = Field(..., description="Information requested from the investor")


class NewCycleRequest(BaseModel):
    reason: str = Field(..., description="Why the investor must verify again")


class ReviewQueueItem(BaseModel):
    """Investor awaiting a KYC decision."""
    investor_id: str
    name: str
    email: Optional[str] = None
    kyc_status: KYCStatus
    kyc_cycle: int = 1
    updated_at: datetime
    identity_document_submitted: bool = False
    proof_of_address_submitted: bool = False
    verification_hint: Optional[str] = None


class ReviewQueue(BaseModel):
    """KYC review queue, each bucket ordered oldest update first."""
    pending: List[ReviewQueueItem] = Field(default_factory=list)
    in_progress: List[ReviewQueueItem] = Field(default_factory=list)
    requires_more_info: List[ReviewQueueItem] = Field(default_factory=list)
    total_count: int = 0


class VerificationOutcomeRequest(BaseModel):
    """Automated verification result reported for an investor's documents."""
    outcome: VerificationOutcome = Field(..., description="APPROVED, REJECTED, NEEDS_REVIEW or IN_PROGRESS")
    provider: str = Field("default", max_length=100, description="Reporting verification provider")


class VerificationOutcomeResponse(BaseModel):
    investor_id: str
    outcome: VerificationOutcome
    provider: str
    recorded_by: str
    recorded_at: datetime
