"""
KYC review API endpoints

This module implements document submission by investors and the review
transitions used by compliance staff, plus the review queue and the intake of
automated document-verification outcomes.
"""

from fastapi import APIRouter, HTTPException, Depends, status
import structlog

from shared.auth import (
    get_current_user,
    require_permissions,
    require_roles,
    Actor,
    Permission,
    Role,
    COMPLIANCE_ROLES,
)
from shared.errors import RecordsError, to_http_exception
from record_versioning.models import EntityVersion

from .models import (
    ApproveRequest,
    IdentityDocument,
    MoreInfoRequest,
    NewCycleRequest,
    ProofOfAddress,
    RejectRequest,
    ReviewQueue,
    VerificationOutcomeRequest,
    VerificationOutcomeResponse,
)
from .workflow import kyc_workflow

logger = structlog.get_logger(__name__)

router = APIRouter()


def _internal_error(message: str, **context) -> HTTPException:
    logger.error(message, **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message
    )


@router.get("/queue", response_model=ReviewQueue)
async def get_review_queue(
    current_user: Actor = Depends(require_permissions(Permission.VIEW_KYC_QUEUE))
):
    """Investors awaiting review, oldest first within each status."""
    try:
        return kyc_workflow.get_review_queue(current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to load KYC review queue", error=str(e))


@router.post("/{investor_id}/identity-document", response_model=EntityVersion)
async def submit_identity_document(
    investor_id: str,
    document: IdentityDocument,
    current_user: Actor = Depends(get_current_user)
):
    """Submit an identity document for the investor's current KYC cycle."""
    try:
        logger.info("Submitting identity document", investor_id=investor_id, actor_id=current_user.actor_id)
        return kyc_workflow.submit_identity_document(investor_id, current_user, document)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to submit identity document", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/proof-of-address", response_model=EntityVersion)
async def submit_proof_of_address(
    investor_id: str,
    proof: ProofOfAddress,
    current_user: Actor = Depends(get_current_user)
):
    try:
        logger.info("Submitting proof of address", investor_id=investor_id, actor_id=current_user.actor_id)
        return kyc_workflow.submit_proof_of_address(investor_id, current_user, proof)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to submit proof of address", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/start-review", response_model=EntityVersion)
async def start_review(
    investor_id: str,
    current_user: Actor = Depends(require_permissions(Permission.VIEW_KYC_QUEUE))
):
    try:
        return kyc_workflow.start_review(investor_id, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to start KYC review", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/approve", response_model=EntityVersion)
async def approve_kyc(
    investor_id: str,
    request: ApproveRequest,
    current_user: Actor = Depends(require_permissions(Permission.APPROVE_KYC))
):
    """
    Approve an investor's KYC.

    The investor must have submitted an identity document and a proof of
    address. Approval activates the account and grants investing access.
    """
    try:
        logger.info("Approving KYC", investor_id=investor_id, actor_id=current_user.actor_id)
        return kyc_workflow.approve(investor_id, current_user, request.notes)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to approve KYC", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/reject", response_model=EntityVersion)
async def reject_kyc(
    investor_id: str,
    request: RejectRequest,
    current_user: Actor = Depends(require_permissions(Permission.REJECT_KYC))
):
    try:
        logger.info("Rejecting KYC", investor_id=investor_id, actor_id=current_user.actor_id)
        return kyc_workflow.reject(investor_id, current_user, request.reason)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to reject KYC", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/request-info", response_model=EntityVersion)
async def request_more_info(
    investor_id: str,
    request: MoreInfoRequest,
    current_user: Actor = Depends(require_permissions(Permission.REJECT_KYC))
):
    try:
        return kyc_workflow.request_more_info(investor_id, current_user, request.message)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to request KYC information", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/new-cycle", response_model=EntityVersion)
async def start_new_cycle(
    investor_id: str,
    request: NewCycleRequest,
    current_user: Actor = Depends(require_permissions(Permission.APPROVE_KYC))
):
    """Require the investor to verify again in a fresh KYC cycle."""
    try:
        return kyc_workflow.start_new_cycle(investor_id, current_user, request.reason)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to start KYC cycle", investor_id=investor_id, error=str(e))


@router.post("/{investor_id}/verification-outcome", response_model=VerificationOutcomeResponse)
async def record_verification_outcome(
    investor_id: str,
    request: VerificationOutcomeRequest,
    current_user: Actor = Depends(require_roles(Role.SYSTEM, *COMPLIANCE_ROLES))
):
    """
    Record the automated document-verification result for an investor.

    Called by the verification provider's integration (System) or by
    compliance staff entering a provider result by hand.
    """
    try:
        logger.info("Recording verification outcome",
                    investor_id=investor_id,
                    outcome=request.outcome.value,
                    actor_id=current_user.actor_id)
        return kyc_workflow.record_verification_outcome(
            investor_id, current_user, request.outcome, provider=request.provider
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to record verification outcome", investor_id=investor_id, error=str(e))
