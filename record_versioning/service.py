"""
Record service: per-entity create, update and read operations.

The service applies ownership rules and input validation before handing a
mutation to the versioned store. The calling actor is passed in explicitly by
the router (or by a workflow) on every call.
"""

import uuid
from collections import Counter
from typing import Any, Dict, Mapping, Optional

import structlog

from shared.auth import (
    Actor,
    Permission,
    Role,
    ADMIN_ROLES,
    COMPLIANCE_ROLES,
    PROPERTY_MANAGER_ROLES,
    STAFF_ROLES,
)
from shared.database import db_manager
from shared.errors import ConflictError, ForbiddenError

from .models import (
    AccountStatus,
    CategoryCount,
    EntityType,
    EntityVersion,
    InvestorStats,
    KYCStatus,
    RecordPage,
    VersionHistory,
)
from .store import VersionedStore
from .validators import validate_attributes

logger = structlog.get_logger(__name__)

OWNER_ATTRIBUTE = "owner_id"

# Roles allowed to update an entity type regardless of ownership
UPDATE_ROLES = {
    EntityType.INVESTOR: STAFF_ROLES,
    EntityType.PROPERTY: PROPERTY_MANAGER_ROLES,
    EntityType.INVESTMENT: ADMIN_ROLES,
    EntityType.TRANSACTION: ADMIN_ROLES,
}

# Roles allowed to read version history regardless of ownership
HISTORY_ROLES = {
    EntityType.INVESTOR: ADMIN_ROLES,
    EntityType.PROPERTY: PROPERTY_MANAGER_ROLES,
    EntityType.INVESTMENT: ADMIN_ROLES,
    EntityType.TRANSACTION: ADMIN_ROLES,
}

# Entity types readable by any authenticated actor
PUBLIC_ENTITY_TYPES = {EntityType.PROPERTY}

# Entity types owners may update themselves
OWNER_UPDATABLE_TYPES = {EntityType.INVESTOR}

DEFAULT_TIER = "STANDARD"
DEFAULT_CATEGORY = "RETAIL"


def is_owner(actor: Actor, version: EntityVersion) -> bool:
    return version.get(OWNER_ATTRIBUTE) == actor.actor_id


def _privileged(actor: Actor, roles) -> bool:
    return actor.has_any_role(set(roles) | {Role.SYSTEM})


class RecordService:
    """Investor and property records on top of the versioned store."""

    def __init__(self, store: VersionedStore):
        self.store = store

    def register_investor(self, actor: Actor, profile: Mapping[str, Any]) -> EntityVersion:
        """
        Create version 1 of an investor owned by the registering actor.

        Raises:
            ConflictError: If a current investor already uses the email
        """
        attributes = validate_attributes(EntityType.INVESTOR, profile)
        email = attributes.get("email")

        for investor in self.store.list_current(EntityType.INVESTOR):
            if (investor.get("email") or "").lower() == email:
                logger.warning("Investor email already registered", email=email)
                raise ConflictError("An investor with this email already exists")

        attributes.update({
            "kyc_status": KYCStatus.PENDING.value,
            "account_status": AccountStatus.PENDING_VERIFICATION.value,
            "verification_level": "UNVERIFIED",
            "aml_check_status": "PENDING",
            "kyc_cycle": 1,
            "total_invested": 0,
            "portfolio_value": 0,
            OWNER_ATTRIBUTE: actor.actor_id,
        })

        investor_id = f"INV-{uuid.uuid4().hex[:12].upper()}"
        created = self.store.create(
            EntityType.INVESTOR,
            investor_id,
            attributes,
            actor,
            reason=f"Investor registered by {actor.identity}",
        )

        logger.info("Investor registered", investor_id=investor_id, actor_id=actor.actor_id)
        return created

    def create_property(self, actor: Actor, details: Mapping[str, Any]) -> EntityVersion:
        """Create version 1 of a property in DRAFT. Admin only."""
        if not _privileged(actor, ADMIN_ROLES):
            raise ForbiddenError("Only administrators can create properties")

        attributes = validate_attributes(EntityType.PROPERTY, details)
        attributes.update({
            "status": "DRAFT",
            "listing_status": "UNLISTED",
            "shares_sold": 0,
            "funding_progress": 0,
        })

        property_id = f"PROP-{uuid.uuid4().hex[:12].upper()}"
        created = self.store.create(
            EntityType.PROPERTY,
            property_id,
            attributes,
            actor,
            reason=f"Property created by {actor.identity}",
        )

        logger.info("Property created", property_id=property_id, actor_id=actor.actor_id)
        return created

    def _check_read(self, entity_type: EntityType, version: EntityVersion, actor: Actor) -> None:
        if entity_type in PUBLIC_ENTITY_TYPES:
            return
        if is_owner(actor, version) or _privileged(actor, STAFF_ROLES):
            return
        raise ForbiddenError(f"Not allowed to view {entity_type.value.lower()} {version.entity_id}")

    def _check_history(self, entity_type: EntityType, entity_id: str, actor: Actor) -> None:
        if _privileged(actor, HISTORY_ROLES[entity_type]):
            return
        current = self.store.get_current(entity_id, entity_type)
        if not is_owner(actor, current):
            raise ForbiddenError(f"Not allowed to view history of {entity_type.value.lower()} {entity_id}")

    def get_current(self, entity_type: EntityType, entity_id: str, actor: Actor) -> EntityVersion:
        current = self.store.get_current(entity_id, entity_type)
        self._check_read(entity_type, current, actor)
        return current

    def get_version(self, entity_type: EntityType, entity_id: str, version: int, actor: Actor) -> EntityVersion:
        self._check_history(entity_type, entity_id, actor)
        return self.store.get_version(entity_id, version, entity_type)

    def get_history(self, entity_type: EntityType, entity_id: str, actor: Actor) -> VersionHistory:
        self._check_history(entity_type, entity_id, actor)
        return self.store.history(entity_id, entity_type)

    def update(
        self,
        entity_type: EntityType,
        entity_id: str,
        patch: Mapping[str, Any],
        actor: Actor,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> EntityVersion:
        """
        Apply a patch to an entity as a new version.

        Raises:
            NotFoundError: If the entity does not exist
            ForbiddenError: If ownership or field permissions fail
            ValidationError: If the patch is malformed
            InvalidReasonError: If a critical field changed without a valid reason
            ConcurrentModificationError: If the entity changed concurrently
        """
        current = self.store.get_current(entity_id, entity_type)

        owner_allowed = entity_type in OWNER_UPDATABLE_TYPES and is_owner(actor, current)
        if not owner_allowed and not _privileged(actor, UPDATE_ROLES[entity_type]):
            logger.warning("Update forbidden",
                           entity_type=entity_type.value,
                           entity_id=entity_id,
                           actor_id=actor.actor_id)
            raise ForbiddenError(f"Not allowed to update {entity_type.value.lower()} {entity_id}")

        cleaned: Dict[str, Any] = validate_attributes(entity_type, patch)

        return self.store.commit(
            entity_id,
            cleaned,
            actor,
            supplied_reason=reason,
            entity_type=entity_type,
            expected_version=expected_version,
        )

    # Listings

    def list_properties(
        self,
        actor: Actor,
        status: Optional[str] = None,
        listing_status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> RecordPage:
        """Current property versions, optionally filtered by status and listing status."""
        filters = {}
        if status:
            filters["status"] = status
        if listing_status:
            filters["listing_status"] = listing_status

        items, total = self.store.page_current(EntityType.PROPERTY, filters, limit=limit, offset=offset)
        logger.info("Properties listed", actor_id=actor.actor_id, count=len(items), total=total)
        return RecordPage(items=items, total=total, limit=limit, offset=offset)

    def list_investors(
        self,
        actor: Actor,
        kyc_status: Optional[KYCStatus] = None,
        account_status: Optional[AccountStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> RecordPage:
        """Current investor versions for staff holding the view-all permission."""
        if Permission.VIEW_ALL_INVESTORS not in actor.permissions:
            raise ForbiddenError("Not allowed to list investors")

        filters = {}
        if kyc_status:
            filters["kyc_status"] = KYCStatus(kyc_status).value
        if account_status:
            filters["account_status"] = AccountStatus(account_status).value

        items, total = self.store.page_current(EntityType.INVESTOR, filters, limit=limit, offset=offset)
        logger.info("Investors listed", actor_id=actor.actor_id, count=len(items), total=total)
        return RecordPage(items=items, total=total, limit=limit, offset=offset)

    def investor_stats(self, actor: Actor) -> InvestorStats:
        """Status, tier and category counts over current investors. Compliance and admins."""
        if not _privileged(actor, COMPLIANCE_ROLES):
            raise ForbiddenError("Compliance officer access required")

        investors = self.store.list_current(EntityType.INVESTOR)
        account_counts = Counter(investor.get("account_status") for investor in investors)
        tiers = Counter(investor.get("account_tier") or DEFAULT_TIER for investor in investors)
        categories = Counter(investor.get("investor_category") or DEFAULT_CATEGORY for investor in investors)

        return InvestorStats(
            total=len(investors),
            active=account_counts[AccountStatus.ACTIVE.value],
            pending_verification=sum(
                1 for investor in investors if investor.get("kyc_status") == KYCStatus.PENDING.value
            ),
            suspended=account_counts[AccountStatus.SUSPENDED.value],
            closed=account_counts[AccountStatus.CLOSED.value],
            by_tier=[CategoryCount(name=name, count=count) for name, count in sorted(tiers.items())],
            by_category=[CategoryCount(name=name, count=count) for name, count in sorted(categories.items())],
        )


# Global service instance
record_service = RecordService(VersionedStore(db_manager))
