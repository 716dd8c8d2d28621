"""
Unit tests for role management guardrails.
"""

import pytest

from administration.models import RoleAction
from administration.roles import RoleManager
from shared.auth import Role
from shared.database import AuditLogModel
from shared.errors import ForbiddenError, NotFoundError, ValidationError


@pytest.fixture
def roles(identity, audit_trail):
    return RoleManager(identity, audit_trail)


@pytest.fixture
def root(identity, super_admin_actor):
    identity.register_actor(super_admin_actor)
    return super_admin_actor


@pytest.fixture
def staff_member(identity, actor_factory):
    return identity.register_actor(actor_factory("staff_001", Role.SUPPORT))


def audit_rows(db_manager, user_id):
    with db_manager.session_scope() as session:
        return [
            (a.action, a.severity, a.entity_type)
            for a in session.query(AuditLogModel).filter(AuditLogModel.entity_id == user_id)
        ]


class TestAddRole:
    """Test granting roles."""

    def test_add_compliance(self, roles, root, staff_member, identity, test_db_manager):
        result = roles.manage_role(root, staff_member.actor_id, RoleAction.ADD, "Compliance")

        assert result.groups == ["Compliance", "Support"]
        assert Role.COMPLIANCE in identity.groups_for(staff_member.actor_id)
        assert audit_rows(test_db_manager, staff_member.actor_id) == [("ROLE_ADD", "HIGH", "USER_ROLE")]

    def test_add_super_admin_is_critical(self, roles, root, staff_member, test_db_manager):
        roles.manage_role(root, staff_member.actor_id, RoleAction.ADD, Role.SUPER_ADMIN)

        assert audit_rows(test_db_manager, staff_member.actor_id) == [("ROLE_ADD", "CRITICAL", "USER_ROLE")]

    def test_only_super_admin(self, roles, identity, admin_actor, staff_member):
        with pytest.raises(ForbiddenError):
            roles.manage_role(admin_actor, staff_member.actor_id, RoleAction.ADD, "Compliance")

        assert identity.groups_for(staff_member.actor_id) == {Role.SUPPORT}

    @pytest.mark.parametrize("role", ["Wizard", "System"])
    def test_invalid_role(self, roles, root, staff_member, role):
        with pytest.raises(ValidationError):
            roles.manage_role(root, staff_member.actor_id, RoleAction.ADD, role)

    def test_unknown_user(self, roles, root):
        with pytest.raises(NotFoundError):
            roles.manage_role(root, "nobody", RoleAction.ADD, "Admin")


class TestRemoveRole:
    """Test removal guardrails."""

    def test_remove_role(self, roles, root, staff_member, identity):
        result = roles.manage_role(root, staff_member.actor_id, RoleAction.REMOVE, "Support")

        assert result.groups == []
        assert identity.groups_for(staff_member.actor_id) == set()

    def test_cannot_remove_own_highest_role(self, roles, root, identity, actor_factory):
        identity.register_actor(actor_factory("root_002", Role.SUPER_ADMIN))

        with pytest.raises(ForbiddenError):
            roles.manage_role(root, root.actor_id, RoleAction.REMOVE, Role.SUPER_ADMIN, confirm_dangerous=True)

        assert Role.SUPER_ADMIN in identity.groups_for(root.actor_id)

    def test_super_admin_removal_needs_confirmation(self, roles, root, identity, actor_factory):
        other = identity.register_actor(actor_factory("root_002", Role.SUPER_ADMIN))

        with pytest.raises(ValidationError):
            roles.manage_role(root, other.actor_id, RoleAction.REMOVE, Role.SUPER_ADMIN)

        result = roles.manage_role(root, other.actor_id, RoleAction.REMOVE, Role.SUPER_ADMIN,
                                   confirm_dangerous=True)
        assert result.groups == []

    def test_last_super_admin_kept(self, roles, identity, actor_factory):
        # Requester holds SuperAdmin in their token but is not a directory member
        requester = actor_factory("break_glass", Role.SUPER_ADMIN)
        last = identity.register_actor(actor_factory("root_001", Role.SUPER_ADMIN))

        with pytest.raises(ForbiddenError) as exc_info:
            roles.manage_role(requester, last.actor_id, RoleAction.REMOVE, Role.SUPER_ADMIN,
                              confirm_dangerous=True)

        assert "last SuperAdmin" in exc_info.value.message
        assert Role.SUPER_ADMIN in identity.groups_for(last.actor_id)

    def test_disabled_holders_not_counted(self, roles, root, identity, actor_factory):
        other = identity.register_actor(actor_factory("root_002", Role.SUPER_ADMIN))
        identity.disable_actor(root.actor_id)

        with pytest.raises(ForbiddenError):
            roles.manage_role(root, other.actor_id, RoleAction.REMOVE, Role.SUPER_ADMIN,
                              confirm_dangerous=True)
