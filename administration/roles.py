"""
Role management with guardrails on the SuperAdmin role.
"""

from typing import Union

import structlog

from shared.audit import AuditSeverity, AuditTrail
from shared.auth import Actor, IdentityDirectory, Role, ASSIGNABLE_ROLES, identity_directory
from shared.database import db_manager
from shared.errors import ForbiddenError, NotFoundError, ValidationError

from .models import RoleAction, RoleChangeResult

logger = structlog.get_logger(__name__)


class RoleManager:
    """Adds and removes identity-provider groups for users."""

    def __init__(self, identity: IdentityDirectory, audit: AuditTrail):
        self.identity = identity
        self.audit = audit

    def _parse_role(self, role: Union[Role, str]) -> Role:
        try:
            parsed = role if isinstance(role, Role) else Role(role)
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")
        if parsed not in ASSIGNABLE_ROLES:
            raise ValidationError(f"Role {parsed.value} cannot be assigned")
        return parsed

    def _check_removal(self, actor: Actor, target_id: str, role: Role, confirm_dangerous: bool) -> None:
        if target_id == actor.actor_id and role == actor.role:
            raise ForbiddenError(f"Cannot remove your own {role.value} role")

        if role != Role.SUPER_ADMIN:
            return

        if not confirm_dangerous:
            raise ValidationError("Removing the SuperAdmin role requires confirm_dangerous")

        holders = self.identity.list_group_members(Role.SUPER_ADMIN)
        if len(holders) <= 1:
            logger.warning("Refused to remove last SuperAdmin", target_id=target_id, actor_id=actor.actor_id)
            raise ForbiddenError("Cannot remove the last SuperAdmin")

    def manage_role(
        self,
        actor: Actor,
        target_id: str,
        action: RoleAction,
        role: Union[Role, str],
        confirm_dangerous: bool = False,
    ) -> RoleChangeResult:
        """
        Add a user to or remove a user from a group. SuperAdmin only.

        All guardrails run before the identity directory is touched.

        Raises:
            ForbiddenError: If the actor is not SuperAdmin, removes their own
                highest role, or would remove the last SuperAdmin
            ValidationError: If the role is unknown or confirmation is missing
            NotFoundError: If the target user does not exist
        """
        if Role.SUPER_ADMIN not in actor.groups:
            raise ForbiddenError("Only SuperAdmin users can manage roles")

        role = self._parse_role(role)
        target = self.identity.get_actor(target_id)
        if target is None:
            raise NotFoundError("User", f"User {target_id} not found")

        previous_groups = sorted(r.value for r in self.identity.groups_for(target_id))

        if action == RoleAction.REMOVE:
            self._check_removal(actor, target_id, role, confirm_dangerous)
            groups = self.identity.remove_from_group(target_id, role)
            message = f"Removed {role.value} role from {target_id}"
        else:
            groups = self.identity.add_to_group(target_id, role)
            message = f"Added {role.value} role to {target_id}"

        new_groups = sorted(r.value for r in groups)
        severity = AuditSeverity.CRITICAL if role == Role.SUPER_ADMIN else AuditSeverity.HIGH
        try:
            self.audit.record(
                action=f"ROLE_{action.value}",
                performed_by=actor.identity,
                entity_type="USER_ROLE",
                entity_id=target_id,
                details={
                    "role": role.value,
                    "previous_groups": previous_groups,
                    "new_groups": new_groups,
                },
                severity=severity,
            )
        except Exception as e:
            logger.error("Failed to audit role change", target_id=target_id, error=str(e))

        logger.info("Role changed",
                    action=action.value,
                    role=role.value,
                    target_id=target_id,
                    actor_id=actor.actor_id)

        return RoleChangeResult(
            user_id=target_id,
            action=action,
            role=role.value,
            groups=new_groups,
            message=message,
        )


# Global instance
role_manager = RoleManager(identity_directory, AuditTrail(db_manager))
