"""
Input validation for investor and property attributes.

Validators run on the patch before it reaches the versioned store and return
a cleaned copy (trimmed names, normalized email and postcode).
"""

import re
from typing import Any, Callable, Dict, List, Mapping

from shared.errors import ValidationError

from .models import AccountStatus, AMLCheckStatus, EntityType, KYCStatus

UK_POSTCODE_PATTERN = re.compile(r'^[A-Z]{1,2}[0-9]{1,2}[A-Z]?\s?[0-9][A-Z]{2}$')
EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
PHONE_PATTERN = re.compile(r'^\+?[0-9\s\-()]{7,20}$')

MAX_ROOMS = 20

# Investor attributes restricted to a fixed set of values
INVESTOR_STATUS_ATTRIBUTES = {
    "kyc_status": KYCStatus,
    "account_status": AccountStatus,
    "aml_check_status": AMLCheckStatus,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_investor_attributes(attributes: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned = dict(attributes)
    errors: List[str] = []

    for name in ("first_name", "last_name"):
        if name in cleaned:
            value = (cleaned[name] or "").strip() if isinstance(cleaned[name], str) else cleaned[name]
            if not value:
                errors.append(f"{name} cannot be empty")
            cleaned[name] = value

    if "email" in cleaned:
        email = str(cleaned["email"] or "").strip().lower()
        if not EMAIL_PATTERN.match(email):
            errors.append("Invalid email format")
        cleaned["email"] = email

    if cleaned.get("phone"):
        if not PHONE_PATTERN.match(str(cleaned["phone"])):
            errors.append("Invalid phone number format")

    if "bank_accounts" in cleaned and not isinstance(cleaned["bank_accounts"], list):
        errors.append("bank_accounts must be a list")

    for name, status_type in INVESTOR_STATUS_ATTRIBUTES.items():
        value = cleaned.get(name)
        if value is None:
            continue
        try:
            cleaned[name] = status_type(value).value
        except ValueError:
            errors.append(f"Invalid {name}: {value}")

    if errors:
        raise ValidationError("; ".join(errors))
    return cleaned


def validate_property_attributes(attributes: Mapping[str, Any]) -> Dict[str, Any]:
    cleaned = dict(attributes)
    errors: List[str] = []

    if "property_name" in cleaned:
        name = (cleaned["property_name"] or "").strip()
        if not name:
            errors.append("Property name cannot be empty")
        cleaned["property_name"] = name

    if cleaned.get("postcode"):
        postcode = str(cleaned["postcode"]).strip().upper()
        if not UK_POSTCODE_PATTERN.match(postcode):
            errors.append("Invalid UK postcode format")
        cleaned["postcode"] = postcode

    for name in ("purchase_price", "current_value", "target_funding_amount", "estimated_rental_income"):
        value = cleaned.get(name)
        if value is not None and (not _is_number(value) or value < 0):
            errors.append(f"{name} must be a non-negative number")

    for name in ("price_per_share", "total_shares"):
        value = cleaned.get(name)
        if value is not None and (not _is_number(value) or value <= 0):
            errors.append(f"{name} must be greater than zero")

    for name in ("bedrooms", "bathrooms"):
        value = cleaned.get(name)
        if value is not None and (not _is_number(value) or not 0 <= value <= MAX_ROOMS):
            errors.append(f"{name} must be between 0 and {MAX_ROOMS}")

    if errors:
        raise ValidationError("; ".join(errors))
    return cleaned


VALIDATORS: Dict[EntityType, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
    EntityType.INVESTOR: validate_investor_attributes,
    EntityType.PROPERTY: validate_property_attributes,
}


def validate_attributes(entity_type: EntityType, attributes: Mapping[str, Any]) -> Dict[str, Any]:
    """Validate and clean attributes for an entity type."""
    validator = VALIDATORS.get(entity_type)
    if validator is None:
        return dict(attributes)
    return validator(attributes)
