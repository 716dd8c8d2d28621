"""
Field-level authorization: which roles may change which attributes.
"""

from typing import Iterable, List, Optional

import structlog

from shared.auth import Role
from shared.errors import ForbiddenError

from .models import EntityType
from .policy_table import DEFAULT_POLICY_TABLE, PolicyTable

logger = structlog.get_logger(__name__)


class FieldPermissionPolicy:
    """Rejects mutations touching attributes outside the caller's role."""

    def __init__(self, table: Optional[PolicyTable] = None):
        self.table = table if table is not None else DEFAULT_POLICY_TABLE

    def offending_fields(
        self,
        entity_type: EntityType,
        changed_fields: Iterable[str],
        role: Optional[Role],
    ) -> List[str]:
        """Changed fields the role is not allowed to change."""
        rules = self.table.get(entity_type, {})
        offending = []
        for name in changed_fields:
            rule = rules.get(name)
            if rule is None or rule.allowed_roles is None:
                continue
            if role not in rule.allowed_roles:
                offending.append(name)
        return sorted(offending)

    def check(
        self,
        entity_type: EntityType,
        changed_fields: Iterable[str],
        role: Optional[Role],
    ) -> None:
        """
        Accept or reject a whole mutation.

        Raises:
            ForbiddenError: Naming every disallowed field
        """
        offending = self.offending_fields(entity_type, changed_fields, role)
        if offending:
            logger.warning("Field change forbidden",
                           entity_type=entity_type.value,
                           role=role.value if role else None,
                           fields=offending)
            raise ForbiddenError(
                f"Role {role.value if role else 'Unknown'} cannot modify: {', '.join(offending)}",
                offending_fields=offending
            )
