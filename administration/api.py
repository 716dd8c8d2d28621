"""
Administration API endpoints

This module implements bulk KYC decisions, bulk account suspension, bulk
notifications, role management, audit log lookups and the staff investor
listing with its summary statistics.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
import structlog

from shared.audit import AuditRecord
from shared.auth import (
    require_permissions,
    require_roles,
    Actor,
    Permission,
    COMPLIANCE_ROLES,
)
from shared.errors import RecordsError, to_http_exception
from record_versioning.models import AccountStatus, InvestorStats, KYCStatus, RecordPage
from record_versioning.service import record_service

from .bulk import bulk_operations
from .models import (
    BulkApproveRequest,
    BulkNotificationRequest,
    BulkOperationResult,
    BulkRejectRequest,
    BulkSuspendRequest,
    RoleChangeRequest,
    RoleChangeResult,
)
from .roles import role_manager

logger = structlog.get_logger(__name__)

router = APIRouter()


def _internal_error(message: str, **context) -> HTTPException:
    logger.error(message, **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message
    )


@router.post("/kyc/bulk-approve", response_model=BulkOperationResult)
async def bulk_approve_kyc(
    request: BulkApproveRequest,
    current_user: Actor = Depends(require_permissions(Permission.APPROVE_KYC, Permission.BULK_OPERATIONS))
):
    """Approve KYC for many investors; failures are reported per id."""
    try:
        return bulk_operations.bulk_approve_kyc(current_user, request.ids, request.notes)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Bulk KYC approval failed", error=str(e))


@router.post("/kyc/bulk-reject", response_model=BulkOperationResult)
async def bulk_reject_kyc(
    request: BulkRejectRequest,
    current_user: Actor = Depends(require_permissions(Permission.REJECT_KYC, Permission.BULK_OPERATIONS))
):
    try:
        return bulk_operations.bulk_reject_kyc(current_user, request.ids, request.reason)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Bulk KYC rejection failed", error=str(e))


@router.post("/investors/bulk-suspend", response_model=BulkOperationResult)
async def bulk_suspend_accounts(
    request: BulkSuspendRequest,
    current_user: Actor = Depends(require_permissions(Permission.MANAGE_USERS, Permission.BULK_OPERATIONS))
):
    try:
        return bulk_operations.bulk_suspend_accounts(current_user, request.ids, request.reason)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Bulk suspension failed", error=str(e))


@router.post("/notifications/bulk-send", response_model=BulkOperationResult)
async def bulk_send_notification(
    request: BulkNotificationRequest,
    current_user: Actor = Depends(require_permissions(Permission.MANAGE_USERS, Permission.BULK_OPERATIONS))
):
    try:
        return bulk_operations.bulk_send_notification(
            current_user,
            request.ids,
            title=request.title,
            message=request.message,
            notification_type=request.type,
            priority=request.priority,
            link=request.link,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Bulk notification failed", error=str(e))


@router.post("/users/{user_id}/roles", response_model=RoleChangeResult)
async def manage_user_role(
    user_id: str,
    request: RoleChangeRequest,
    current_user: Actor = Depends(require_permissions(Permission.MANAGE_ROLES))
):
    """
    Add or remove a role for a user.

    Removing the SuperAdmin role needs ``confirm_dangerous`` and is refused for
    the caller's own account and for the last remaining SuperAdmin.
    """
    try:
        logger.info("Managing user role",
                    user_id=user_id,
                    action=request.action.value,
                    role=request.role,
                    actor_id=current_user.actor_id)
        return role_manager.manage_role(
            current_user,
            user_id,
            request.action,
            request.role,
            confirm_dangerous=request.confirm_dangerous,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Role change failed", user_id=user_id, error=str(e))


@router.get("/audit/{entity_type}/{entity_id}", response_model=List[AuditRecord])
async def get_audit_log(
    entity_type: str,
    entity_id: str,
    limit: int = Query(100, ge=1, le=1000),
    current_user: Actor = Depends(require_permissions(Permission.ACCESS_AUDIT_LOGS))
):
    """Audit records for an entity, newest first."""
    try:
        return bulk_operations.audit.for_entity(entity_type.upper(), entity_id, limit=limit)
    except Exception as e:
        raise _internal_error("Failed to load audit log", entity_id=entity_id, error=str(e))


@router.get("/investors", response_model=RecordPage)
async def list_investors(
    kyc_status: Optional[KYCStatus] = Query(None, description="Filter by KYC status"),
    account_status: Optional[AccountStatus] = Query(None, description="Filter by account status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Actor = Depends(require_permissions(Permission.VIEW_ALL_INVESTORS))
):
    """Current versions of all investors, oldest update first."""
    try:
        return record_service.list_investors(
            current_user,
            kyc_status=kyc_status,
            account_status=account_status,
            limit=limit,
            offset=offset,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to list investors", error=str(e))


@router.get("/investors/stats", response_model=InvestorStats)
async def get_investor_stats(
    current_user: Actor = Depends(require_roles(*COMPLIANCE_ROLES))
):
    try:
        return record_service.investor_stats(current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to compute investor stats", error=str(e))
