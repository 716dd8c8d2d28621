"""
Unit tests for the field permission policy.
"""

import pytest

from record_versioning.field_permissions import FieldPermissionPolicy
from record_versioning.models import EntityType
from record_versioning.policy_table import FieldRule
from shared.auth import Role
from shared.errors import ForbiddenError


@pytest.fixture
def policy():
    return FieldPermissionPolicy()


class TestPropertyFields:
    """Test admin-only property fields."""

    @pytest.mark.parametrize("field", [
        "status", "listing_status", "current_value", "price_per_share",
        "total_shares", "purchase_price", "target_funding_amount",
    ])
    def test_property_manager_cannot_change_admin_fields(self, policy, field):
        with pytest.raises(ForbiddenError) as exc_info:
            policy.check(EntityType.PROPERTY, [field], Role.PROPERTY_MANAGER)

        assert exc_info.value.offending_fields == [field]

    @pytest.mark.parametrize("role", [Role.ADMIN, Role.SUPER_ADMIN, Role.SYSTEM])
    def test_admin_roles_can_change_valuation(self, policy, role):
        policy.check(EntityType.PROPERTY, ["current_value", "price_per_share"], role)

    def test_unlisted_fields_unrestricted(self, policy):
        policy.check(EntityType.PROPERTY, ["description", "images"], Role.PROPERTY_MANAGER)


class TestInvestorFields:
    """Test compliance and admin gated investor fields."""

    def test_compliance_can_change_kyc_status(self, policy):
        policy.check(EntityType.INVESTOR, ["kyc_status", "aml_check_status", "is_pep"], Role.COMPLIANCE)

    def test_compliance_cannot_change_account_status(self, policy):
        with pytest.raises(ForbiddenError) as exc_info:
            policy.check(EntityType.INVESTOR, ["kyc_status", "account_status"], Role.COMPLIANCE)

        assert exc_info.value.offending_fields == ["account_status"]

    def test_investor_cannot_change_own_kyc_status(self, policy):
        with pytest.raises(ForbiddenError):
            policy.check(EntityType.INVESTOR, ["kyc_status"], Role.INVESTOR)

    def test_investor_can_change_contact_details(self, policy):
        policy.check(EntityType.INVESTOR, ["phone", "address", "bank_accounts"], Role.INVESTOR)

    def test_whole_mutation_rejected_naming_every_field(self, policy):
        with pytest.raises(ForbiddenError) as exc_info:
            policy.check(EntityType.INVESTOR, ["phone", "email", "account_tier"], Role.SUPPORT)

        assert exc_info.value.offending_fields == ["account_tier", "email"]

    def test_actor_without_role_rejected_on_gated_fields(self, policy):
        assert policy.offending_fields(EntityType.INVESTOR, ["email"], None) == ["email"]


class TestCustomTable:
    """Test policies built from a custom table."""

    def test_custom_rule_applied(self):
        policy = FieldPermissionPolicy({
            EntityType.TRANSACTION: {"amount": FieldRule(allowed_roles=frozenset({Role.COMPLIANCE}))},
        })

        policy.check(EntityType.TRANSACTION, ["amount"], Role.COMPLIANCE)
        with pytest.raises(ForbiddenError):
            policy.check(EntityType.TRANSACTION, ["amount"], Role.ADMIN)

    def test_entity_type_without_rules_unrestricted(self):
        policy = FieldPermissionPolicy({})

        policy.check(EntityType.PROPERTY, ["current_value"], Role.INVESTOR)
