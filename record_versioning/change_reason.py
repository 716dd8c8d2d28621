"""
Change reason policy.

Critical attributes need a caller-supplied justification of bounded length.
Other changes use the supplied reason when there is one, or a reason built
from a per-field template naming the actor.
"""

from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from shared.auth import Actor
from shared.config import settings
from shared.errors import InvalidReasonError

from .models import EntityType
from .policy_table import DEFAULT_POLICY_TABLE, PolicyTable

REASON_TEMPLATES: Dict[Tuple[EntityType, str], str] = {
    (EntityType.INVESTOR, "first_name"): "Name updated by {actor}",
    (EntityType.INVESTOR, "last_name"): "Name updated by {actor}",
    (EntityType.INVESTOR, "phone"): "Phone number updated by {actor}",
    (EntityType.INVESTOR, "address"): "Address updated by {actor}",
    (EntityType.INVESTOR, "communication_preferences"): "Communication preferences updated by {actor}",
    (EntityType.INVESTOR, "identity_verification"): "Identity document submitted by {actor}",
    (EntityType.INVESTOR, "proof_of_address"): "Proof of address submitted by {actor}",
    (EntityType.INVESTOR, "total_invested"): "Portfolio totals updated by {actor}",
    (EntityType.INVESTOR, "total_roi"): "Portfolio ROI recalculated by {actor}",
    (EntityType.PROPERTY, "property_name"): "Property name updated by {actor}",
    (EntityType.PROPERTY, "description"): "Property description updated by {actor}",
    (EntityType.PROPERTY, "images"): "Property images updated by {actor}",
    (EntityType.PROPERTY, "features"): "Property features updated by {actor}",
    (EntityType.PROPERTY, "amenities"): "Property amenities updated by {actor}",
    (EntityType.PROPERTY, "estimated_rental_income"): "Rental income estimate updated by {actor}",
}

GENERIC_TEMPLATE = "Updated {fields} by {actor}"


class ChangeReasonPolicy:
    """Resolves the change reason stored on a new version."""

    def __init__(
        self,
        table: Optional[PolicyTable] = None,
        templates: Optional[Mapping[Tuple[EntityType, str], str]] = None,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
    ):
        self.table = table if table is not None else DEFAULT_POLICY_TABLE
        self.templates = templates if templates is not None else REASON_TEMPLATES
        self.min_length = min_length or settings.CHANGE_REASON_MIN_LENGTH
        self.max_length = max_length or settings.CHANGE_REASON_MAX_LENGTH

    def critical_fields(self, entity_type: EntityType, changed_fields: Iterable[str]) -> List[str]:
        rules = self.table.get(entity_type, {})
        return sorted(name for name in changed_fields if name in rules and rules[name].critical)

    def validate_reason(
        self,
        reason: Optional[str],
        critical_fields: Iterable[str] = (),
        min_length: Optional[int] = None,
    ) -> str:
        """
        Check a justification against the length bounds and return it trimmed.

        Raises:
            InvalidReasonError: If the reason is missing, too short or too long
        """
        minimum = min_length or self.min_length
        trimmed = (reason or "").strip()
        critical_fields = list(critical_fields)
        subject = f" for changes to {', '.join(critical_fields)}" if critical_fields else ""

        if not trimmed:
            raise InvalidReasonError(f"A change reason is required{subject}", critical_fields)
        if len(trimmed) < minimum:
            raise InvalidReasonError(
                f"Change reason must be at least {minimum} characters{subject}",
                critical_fields
            )
        if len(trimmed) > self.max_length:
            raise InvalidReasonError(
                f"Change reason must be at most {self.max_length} characters",
                critical_fields
            )
        return trimmed

    def resolve(
        self,
        entity_type: EntityType,
        changed_fields: Iterable[str],
        supplied_reason: Optional[str],
        actor: Actor,
        min_length: Optional[int] = None,
    ) -> str:
        changed_fields = sorted(changed_fields)
        critical = self.critical_fields(entity_type, changed_fields)
        if critical:
            return self.validate_reason(supplied_reason, critical, min_length)

        if supplied_reason and supplied_reason.strip():
            return supplied_reason.strip()[:self.max_length]

        if len(changed_fields) == 1:
            template = self.templates.get((entity_type, changed_fields[0]))
            if template:
                return template.format(actor=actor.identity)

        return GENERIC_TEMPLATE.format(fields=", ".join(changed_fields), actor=actor.identity)
