"""
Unit tests for the change reason policy.
"""

import pytest

from record_versioning.change_reason import ChangeReasonPolicy
from record_versioning.models import EntityType
from shared.errors import InvalidReasonError


@pytest.fixture
def policy():
    return ChangeReasonPolicy(min_length=10, max_length=500)


class TestCriticalFields:
    """Test reasons required for critical changes."""

    def test_missing_reason_names_critical_fields(self, policy, compliance_actor):
        with pytest.raises(InvalidReasonError) as exc_info:
            policy.resolve(EntityType.INVESTOR, ["kyc_status", "phone"], None, compliance_actor)

        assert exc_info.value.critical_fields == ["kyc_status"]

    def test_short_reason_rejected(self, policy, compliance_actor):
        with pytest.raises(InvalidReasonError) as exc_info:
            policy.resolve(EntityType.INVESTOR, ["kyc_status"], "too short", compliance_actor)

        assert "at least 10" in exc_info.value.message

    def test_whitespace_does_not_count_towards_length(self, policy, compliance_actor):
        with pytest.raises(InvalidReasonError):
            policy.resolve(EntityType.INVESTOR, ["kyc_status"], "   short    ", compliance_actor)

    def test_overlong_reason_rejected(self, policy, admin_actor):
        with pytest.raises(InvalidReasonError):
            policy.resolve(EntityType.PROPERTY, ["current_value"], "x" * 501, admin_actor)

    def test_valid_reason_returned_trimmed(self, policy, compliance_actor):
        reason = policy.resolve(EntityType.INVESTOR, ["kyc_status"], "  Documents verified  ", compliance_actor)

        assert reason == "Documents verified"

    def test_minimum_length_override(self, policy, compliance_actor):
        with pytest.raises(InvalidReasonError):
            policy.resolve(EntityType.INVESTOR, ["kyc_status"], "Fifteen chars!!", compliance_actor, min_length=20)

    def test_critical_fields_per_entity_type(self, policy):
        assert policy.critical_fields(EntityType.PROPERTY, ["description", "status"]) == ["status"]
        assert policy.critical_fields(EntityType.INVESTOR, ["description", "status"]) == []


class TestSynthesizedReasons:
    """Test reasons generated for non-critical changes."""

    def test_supplied_reason_used(self, policy, investor_actor):
        reason = policy.resolve(EntityType.INVESTOR, ["phone"], "Moved house", investor_actor)

        assert reason == "Moved house"

    def test_template_for_single_field(self, policy, investor_actor):
        reason = policy.resolve(EntityType.INVESTOR, ["phone"], None, investor_actor)

        assert reason == f"Phone number updated by {investor_actor.identity}"

    def test_generic_fallback_for_several_fields(self, policy, investor_actor):
        reason = policy.resolve(EntityType.INVESTOR, ["phone", "address"], "", investor_actor)

        assert reason == f"Updated address, phone by {investor_actor.identity}"

    def test_generic_fallback_for_field_without_template(self, policy, property_manager_actor):
        reason = policy.resolve(EntityType.PROPERTY, ["bedrooms"], None, property_manager_actor)

        assert reason == f"Updated bedrooms by {property_manager_actor.identity}"
