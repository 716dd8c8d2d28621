"""
Investor and property record API endpoints

This module exposes versioned investor and property records: registration and
creation, updates committed as new versions, and version history lookups,
plus the current property listing.
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Depends, Query, status
import structlog

from shared.auth import (
    get_current_user,
    require_permissions,
    Actor,
    Permission
)
from shared.errors import RecordsError, to_http_exception

from .models import (
    EntityType,
    EntityVersion,
    InvestorRegistration,
    InvestorUpdate,
    PropertyCreate,
    PropertyUpdate,
    RecordPage,
    VersionHistory,
)
from .service import record_service

logger = structlog.get_logger(__name__)

investors_router = APIRouter()
properties_router = APIRouter()

UPDATE_CONTROL_FIELDS = {"change_reason", "expected_version"}


def _internal_error(message: str, **context) -> HTTPException:
    logger.error(message, **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=message
    )


@investors_router.post("/", response_model=EntityVersion, status_code=status.HTTP_201_CREATED)
async def register_investor(
    registration: InvestorRegistration,
    current_user: Actor = Depends(get_current_user)
):
    """
    Register a new investor.

    The investor starts with KYC status PENDING and is owned by the caller.
    """
    try:
        logger.info("Registering investor", actor_id=current_user.actor_id)
        return record_service.register_investor(current_user, registration.model_dump(exclude_none=True, mode="json"))
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to register investor", error=str(e))


@investors_router.get("/{investor_id}", response_model=EntityVersion)
async def get_investor(
    investor_id: str,
    current_user: Actor = Depends(get_current_user)
):
    """Current version of an investor. Owner or staff only."""
    try:
        return record_service.get_current(EntityType.INVESTOR, investor_id, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve investor", investor_id=investor_id, error=str(e))


@investors_router.put("/{investor_id}", response_model=EntityVersion)
async def update_investor(
    investor_id: str,
    investor_update: InvestorUpdate,
    current_user: Actor = Depends(get_current_user)
):
    """
    Update investor data.

    Changes are committed as a new version; critical fields need a change
    reason and restricted fields need the matching role.
    """
    try:
        logger.info("Updating investor", investor_id=investor_id, actor_id=current_user.actor_id)

        patch = investor_update.model_dump(exclude_unset=True, exclude=UPDATE_CONTROL_FIELDS, mode="json")
        return record_service.update(
            EntityType.INVESTOR,
            investor_id,
            patch,
            current_user,
            reason=investor_update.change_reason,
            expected_version=investor_update.expected_version,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to update investor", investor_id=investor_id, error=str(e))


@investors_router.get("/{investor_id}/versions", response_model=VersionHistory)
async def get_investor_versions(
    investor_id: str,
    current_user: Actor = Depends(get_current_user)
):
    """Version timeline of an investor, newest first. Owner or admin only."""
    try:
        return record_service.get_history(EntityType.INVESTOR, investor_id, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve investor history", investor_id=investor_id, error=str(e))


@investors_router.get("/{investor_id}/versions/{version}", response_model=EntityVersion)
async def get_investor_version(
    investor_id: str,
    version: int,
    current_user: Actor = Depends(get_current_user)
):
    try:
        return record_service.get_version(EntityType.INVESTOR, investor_id, version, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve investor version", investor_id=investor_id, error=str(e))


@properties_router.post("/", response_model=EntityVersion, status_code=status.HTTP_201_CREATED)
async def create_property(
    property_data: PropertyCreate,
    current_user: Actor = Depends(require_permissions(Permission.CREATE_PROPERTIES))
):
    """Create a property in DRAFT status."""
    try:
        logger.info("Creating property", actor_id=current_user.actor_id)
        return record_service.create_property(current_user, property_data.model_dump(exclude_none=True, mode="json"))
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to create property", error=str(e))


@properties_router.get("/", response_model=RecordPage)
async def list_properties(
    status_filter: Optional[str] = Query(None, alias="status", description="Property status, e.g. DRAFT or ACTIVE"),
    listing_status: Optional[str] = Query(None, description="Listing status, e.g. LISTED"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    current_user: Actor = Depends(get_current_user)
):
    """Current versions of all properties, oldest update first."""
    try:
        return record_service.list_properties(
            current_user,
            status=status_filter,
            listing_status=listing_status,
            limit=limit,
            offset=offset,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to list properties", error=str(e))


@properties_router.get("/{property_id}", response_model=EntityVersion)
async def get_property(
    property_id: str,
    current_user: Actor = Depends(get_current_user)
):
    try:
        return record_service.get_current(EntityType.PROPERTY, property_id, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve property", property_id=property_id, error=str(e))


@properties_router.put("/{property_id}", response_model=EntityVersion)
async def update_property(
    property_id: str,
    property_update: PropertyUpdate,
    current_user: Actor = Depends(require_permissions(Permission.UPDATE_PROPERTIES))
):
    """
    Update property data.

    Status, listing, valuation and share pricing fields are admin only and
    need a change reason.
    """
    try:
        logger.info("Updating property", property_id=property_id, actor_id=current_user.actor_id)

        patch = property_update.model_dump(exclude_unset=True, exclude=UPDATE_CONTROL_FIELDS, mode="json")
        return record_service.update(
            EntityType.PROPERTY,
            property_id,
            patch,
            current_user,
            reason=property_update.change_reason,
            expected_version=property_update.expected_version,
        )
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to update property", property_id=property_id, error=str(e))


@properties_router.get("/{property_id}/versions", response_model=VersionHistory)
async def get_property_versions(
    property_id: str,
    current_user: Actor = Depends(get_current_user)
):
    try:
        return record_service.get_history(EntityType.PROPERTY, property_id, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve property history", property_id=property_id, error=str(e))


@properties_router.get("/{property_id}/versions/{version}", response_model=EntityVersion)
async def get_property_version(
    property_id: str,
    version: int,
    current_user: Actor = Depends(get_current_user)
):
    try:
        return record_service.get_version(EntityType.PROPERTY, property_id, version, current_user)
    except RecordsError as e:
        raise to_http_exception(e)
    except Exception as e:
        raise _internal_error("Failed to retrieve property version", property_id=property_id, error=str(e))
