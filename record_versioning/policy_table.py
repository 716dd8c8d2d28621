"""
Field policy table: for every entity type, which attributes are restricted to
which roles and which attributes are critical (need a caller-supplied reason).

The table is built once at import and shared by the field permission and
change reason policies.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping, Optional

from shared.auth import Role, ADMIN_ROLES, COMPLIANCE_ROLES

from .models import EntityType


@dataclass(frozen=True)
class FieldRule:
    """Rule for one attribute. ``allowed_roles`` of None means unrestricted."""
    allowed_roles: Optional[FrozenSet[Role]] = None
    critical: bool = False


def _gated(roles: FrozenSet[Role], critical: bool = False) -> FieldRule:
    # Workflow commits run as System and may touch any gated field
    return FieldRule(allowed_roles=frozenset(roles) | {Role.SYSTEM}, critical=critical)


PolicyTable = Mapping[EntityType, Mapping[str, FieldRule]]


DEFAULT_POLICY_TABLE: Dict[EntityType, Dict[str, FieldRule]] = {
    EntityType.INVESTOR: {
        "email": _gated(ADMIN_ROLES, critical=True),
        "kyc_status": _gated(COMPLIANCE_ROLES, critical=True),
        "aml_check_status": _gated(COMPLIANCE_ROLES, critical=True),
        "sanctions_check_status": _gated(COMPLIANCE_ROLES, critical=True),
        "is_pep": _gated(COMPLIANCE_ROLES, critical=True),
        "account_status": _gated(ADMIN_ROLES, critical=True),
        "account_tier": _gated(ADMIN_ROLES, critical=True),
        "investor_category": _gated(COMPLIANCE_ROLES, critical=True),
        "bank_accounts": FieldRule(critical=True),
        "verification_level": _gated(COMPLIANCE_ROLES),
        "kyc_expiry_date": _gated(COMPLIANCE_ROLES),
        "kyc_verified_date": _gated(COMPLIANCE_ROLES),
        "kyc_rejection_reason": _gated(COMPLIANCE_ROLES),
        "kyc_cycle": _gated(COMPLIANCE_ROLES),
        "identity_verification": _gated(COMPLIANCE_ROLES),
        "proof_of_address": _gated(COMPLIANCE_ROLES),
        "suspension_reason": _gated(ADMIN_ROLES),
        "admin_notes": _gated(ADMIN_ROLES),
        "owner_id": _gated(ADMIN_ROLES),
        "total_invested": _gated(ADMIN_ROLES),
        "portfolio_value": _gated(ADMIN_ROLES),
        "total_roi": _gated(ADMIN_ROLES),
    },
    EntityType.PROPERTY: {
        "status": _gated(ADMIN_ROLES, critical=True),
        "listing_status": _gated(ADMIN_ROLES, critical=True),
        "current_value": _gated(ADMIN_ROLES, critical=True),
        "price_per_share": _gated(ADMIN_ROLES, critical=True),
        "total_shares": _gated(ADMIN_ROLES, critical=True),
        "purchase_price": _gated(ADMIN_ROLES, critical=True),
        "target_funding_amount": _gated(ADMIN_ROLES, critical=True),
        "notes": _gated(ADMIN_ROLES),
    },
    EntityType.INVESTMENT: {
        "status": _gated(ADMIN_ROLES, critical=True),
        "amount": _gated(ADMIN_ROLES, critical=True),
        "number_of_shares": _gated(ADMIN_ROLES, critical=True),
    },
    EntityType.TRANSACTION: {
        "status": _gated(ADMIN_ROLES, critical=True),
        "amount": _gated(ADMIN_ROLES, critical=True),
    },
}
