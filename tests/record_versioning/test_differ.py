"""
Unit tests for the attribute differ.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from record_versioning.differ import RESERVED_ATTRIBUTES, diff, normalize
from shared.errors import ValidationError


class TestDiff:
    """Test changed-field detection and snapshot merging."""

    def test_changed_fields_only_include_differences(self):
        current = {"first_name": "Jane", "phone": "123", "address": "Old Street"}

        result = diff(current, {"first_name": "Jane", "address": "New Street"})

        assert result.changed_fields == ["address"]
        assert result.next_snapshot == {"first_name": "Jane", "phone": "123", "address": "New Street"}

    def test_identical_patch_is_empty(self):
        current = {"kyc_status": "PENDING", "bank_accounts": [{"sort_code": "12-34-56"}]}

        result = diff(current, {"kyc_status": "PENDING", "bank_accounts": [{"sort_code": "12-34-56"}]})

        assert result.is_empty
        assert result.next_snapshot == current

    def test_nested_values_compared_deeply(self):
        current = {"communication_preferences": {"email": True, "sms": False}}

        unchanged = diff(current, {"communication_preferences": {"sms": False, "email": True}})
        changed = diff(current, {"communication_preferences": {"email": True, "sms": True}})

        assert unchanged.is_empty
        assert changed.changed_fields == ["communication_preferences"]

    def test_new_attribute_is_a_change(self):
        result = diff({"first_name": "Jane"}, {"admin_notes": None})

        assert result.changed_fields == ["admin_notes"]
        assert result.next_snapshot["admin_notes"] is None

    def test_changed_fields_are_sorted(self):
        result = diff({}, {"b": 1, "a": 2, "c": 3})

        assert result.changed_fields == ["a", "b", "c"]

    def test_values_normalized_before_comparison(self):
        current = {"kyc_verified_date": "2024-01-01T00:00:00", "current_value": 100.5}

        result = diff(current, {
            "kyc_verified_date": datetime(2024, 1, 1),
            "current_value": Decimal("100.5"),
        })

        assert result.is_empty

    def test_integral_float_equals_int(self):
        current = {"current_value": 500000.0, "valuations": [{"amount": 250000}]}

        result = diff(current, {"current_value": 500000, "valuations": [{"amount": 250000.0}]})

        assert result.is_empty
        assert result.next_snapshot["current_value"] == 500000

    def test_numbers_compared_by_value(self):
        result = diff({"current_value": 500000.0, "is_pep": True}, {"current_value": 500000.5, "is_pep": 1})

        assert result.changed_fields == ["current_value", "is_pep"]

    def test_current_snapshot_not_mutated(self):
        current = {"tags": ["a"]}

        result = diff(current, {"tags": ["a", "b"]})

        assert current == {"tags": ["a"]}
        assert result.next_snapshot["tags"] == ["a", "b"]

    @pytest.mark.parametrize("name", sorted(RESERVED_ATTRIBUTES))
    def test_reserved_attributes_rejected(self, name):
        with pytest.raises(ValidationError) as exc_info:
            diff({}, {name: "x"})

        assert name in exc_info.value.message


class TestNormalize:
    """Test JSON normalization of stored values."""

    def test_dates_become_iso_strings(self):
        assert normalize(date(2025, 5, 1)) == "2025-05-01"

    def test_unserializable_value_rejected(self):
        with pytest.raises(ValidationError):
            normalize(object())
