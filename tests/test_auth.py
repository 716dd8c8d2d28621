"""
Unit tests for authentication and authorization module.
"""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from shared.auth import (
    Actor,
    Role,
    Permission,
    TokenData,
    JWTManager,
    IdentityDirectory,
    AuthenticationError,
    ROLE_PERMISSIONS,
    ASSIGNABLE_ROLES,
    get_current_user,
    permission_summary,
    require_permissions,
    require_roles,
    workflow_actor,
    jwt_manager,
)


class TestActor:
    """Test Actor model."""

    def test_actor_creation(self):
        actor = Actor(
            actor_id="test_001",
            actor_name="Test User",
            email="test@example.com",
            groups={Role.COMPLIANCE, Role.SUPPORT}
        )

        assert actor.role == Role.COMPLIANCE
        assert actor.identity == "test@example.com"
        assert Permission.APPROVE_KYC in actor.permissions
        assert actor.is_active is True
        assert isinstance(actor.created_at, datetime)

    def test_identity_falls_back_to_id(self):
        actor = Actor(actor_id="test_002", actor_name="No Email")

        assert actor.identity == "test_002"
        assert actor.role is None
        assert len(actor.permissions) == 0

    def test_workflow_actor_keeps_identity(self):
        reviewer = Actor(actor_id="rev_001", actor_name="Reviewer", email="rev@example.com",
                         groups={Role.COMPLIANCE})

        acting = workflow_actor(reviewer)

        assert acting.groups == {Role.SYSTEM}
        assert acting.identity == reviewer.identity
        assert acting.actor_name == "Reviewer"
        # Original actor untouched
        assert reviewer.groups == {Role.COMPLIANCE}


class TestJWTManager:
    """Test JWT token management."""

    @pytest.fixture
    def jwt_manager_instance(self):
        return JWTManager("test-secret-key", "HS256")

    @pytest.fixture
    def test_actor(self):
        return Actor(
            actor_id="test_jwt_001",
            actor_name="JWT Test User",
            groups={Role.ADMIN}
        )

    def test_create_and_verify_token(self, jwt_manager_instance, test_actor):
        token = jwt_manager_instance.create_access_token(test_actor)

        token_data = jwt_manager_instance.verify_token(token)

        assert isinstance(token_data, TokenData)
        assert token_data.sub == "test_jwt_001"
        assert token_data.groups == ["Admin"]

    def test_verify_token_invalid(self, jwt_manager_instance):
        with pytest.raises(AuthenticationError, match="Invalid token"):
            jwt_manager_instance.verify_token("invalid.token.here")

    def test_verify_token_wrong_secret(self, jwt_manager_instance, test_actor):
        token = JWTManager("other-secret").create_access_token(test_actor)

        with pytest.raises(AuthenticationError):
            jwt_manager_instance.verify_token(token)

    def test_verify_token_expired(self, jwt_manager_instance, test_actor):
        token = jwt_manager_instance.create_access_token(test_actor, timedelta(seconds=-1))

        with pytest.raises(AuthenticationError, match="Token has expired"):
            jwt_manager_instance.verify_token(token)


class TestIdentityDirectory:
    """Test the identity directory."""

    @pytest.fixture
    def directory(self):
        return IdentityDirectory()

    def test_system_actor_present(self, directory):
        assert directory.get_actor("system").groups == {Role.SYSTEM}

    def test_register_duplicate(self, directory):
        directory.register_actor(Actor(actor_id="a1", actor_name="A"))

        with pytest.raises(ValueError, match="already exists"):
            directory.register_actor(Actor(actor_id="a1", actor_name="A again"))

    def test_group_membership(self, directory):
        directory.register_actor(Actor(actor_id="a1", actor_name="A", groups={Role.INVESTOR}))

        assert directory.add_to_group("a1", Role.VERIFIED_INVESTOR) == {Role.INVESTOR, Role.VERIFIED_INVESTOR}
        assert directory.remove_from_group("a1", Role.INVESTOR) == {Role.VERIFIED_INVESTOR}
        assert directory.groups_for("a1") == {Role.VERIFIED_INVESTOR}

    def test_unknown_actor(self, directory):
        with pytest.raises(KeyError):
            directory.add_to_group("ghost", Role.ADMIN)

    def test_list_group_members_skips_disabled(self, directory):
        directory.register_actor(Actor(actor_id="s1", actor_name="S1", groups={Role.SUPER_ADMIN}))
        directory.register_actor(Actor(actor_id="s2", actor_name="S2", groups={Role.SUPER_ADMIN}))

        directory.disable_actor("s2")

        assert [a.actor_id for a in directory.list_group_members(Role.SUPER_ADMIN)] == ["s1"]


class TestRolePermissions:
    """Test role-permission mappings."""

    def test_every_role_mapped(self):
        for role in Role:
            assert role in ROLE_PERMISSIONS

    def test_system_not_assignable(self):
        assert Role.SYSTEM not in ASSIGNABLE_ROLES
        assert Role.SUPER_ADMIN in ASSIGNABLE_ROLES

    def test_only_super_admin_manages_roles(self):
        holders = {role for role, perms in ROLE_PERMISSIONS.items() if Permission.MANAGE_ROLES in perms}

        assert holders == {Role.SYSTEM, Role.SUPER_ADMIN}

    def test_compliance_permissions(self):
        permissions = ROLE_PERMISSIONS[Role.COMPLIANCE]

        assert Permission.APPROVE_KYC in permissions
        assert Permission.VIEW_KYC_QUEUE in permissions
        assert Permission.UPDATE_PROPERTIES not in permissions


class TestAuthenticationDependencies:
    """Test authentication dependency functions."""

    @pytest.fixture
    def mock_credentials(self):
        return HTTPAuthorizationCredentials(scheme="Bearer", credentials="test_token")

    def token_for(self, actor_id):
        return TokenData(
            sub=actor_id,
            groups=["Compliance"],
            exp=datetime.now(timezone.utc) + timedelta(hours=1)
        )

    @pytest.mark.asyncio
    async def test_get_current_user_success(self, mock_credentials):
        directory = IdentityDirectory()
        test_actor = directory.register_actor(
            Actor(actor_id="test_auth_001", actor_name="Auth Test User", groups={Role.COMPLIANCE})
        )

        with patch.object(jwt_manager, 'verify_token', return_value=self.token_for("test_auth_001")) as mock_verify:
            with patch('shared.auth.identity_directory', directory):
                result = await get_current_user(mock_credentials)

        assert result == test_actor
        mock_verify.assert_called_once_with("test_token")

    @pytest.mark.asyncio
    async def test_get_current_user_invalid_token(self, mock_credentials):
        with patch.object(jwt_manager, 'verify_token', side_effect=AuthenticationError("Invalid token")):
            with pytest.raises(HTTPException) as exc_info:
                await get_current_user(mock_credentials)

        assert exc_info.value.status_code == 401
        assert "Invalid token" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_get_current_user_actor_not_found(self, mock_credentials):
        with patch.object(jwt_manager, 'verify_token', return_value=self.token_for("nonexistent")):
            with patch('shared.auth.identity_directory', IdentityDirectory()):
                with pytest.raises(HTTPException) as exc_info:
                    await get_current_user(mock_credentials)

        assert exc_info.value.status_code == 401
        assert "Actor not found" in str(exc_info.value.detail)

    @pytest.mark.asyncio
    async def test_get_current_user_inactive_actor(self, mock_credentials):
        directory = IdentityDirectory()
        directory.register_actor(Actor(actor_id="suspended_001", actor_name="Suspended", is_active=False))

        with patch.object(jwt_manager, 'verify_token', return_value=self.token_for("suspended_001")):
            with patch('shared.auth.identity_directory', directory):
                with pytest.raises(HTTPException) as exc_info:
                    await get_current_user(mock_credentials)

        assert exc_info.value.status_code == 401
        assert "Inactive actor" in str(exc_info.value.detail)


class TestAuthorizationDependencies:
    """Test authorization dependency functions."""

    @pytest.fixture
    def compliance_user(self):
        return Actor(actor_id="test_authz_001", actor_name="Authz Test User", groups={Role.COMPLIANCE})

    def test_require_permissions_success(self, compliance_user):
        permission_checker = require_permissions(Permission.APPROVE_KYC, Permission.VIEW_KYC_QUEUE)

        assert permission_checker(compliance_user) == compliance_user

    def test_require_permissions_failure(self, compliance_user):
        permission_checker = require_permissions(Permission.APPROVE_KYC, Permission.MANAGE_ROLES)

        with pytest.raises(HTTPException) as exc_info:
            permission_checker(compliance_user)

        assert exc_info.value.status_code == 403
        assert "manage_roles" in str(exc_info.value.detail)

    def test_require_roles(self, compliance_user):
        assert require_roles(Role.ADMIN, Role.COMPLIANCE)(compliance_user) == compliance_user

        with pytest.raises(HTTPException) as exc_info:
            require_roles(Role.ADMIN)(compliance_user)

        assert exc_info.value.status_code == 403


class TestPermissionSummary:
    """Test the capability summary."""

    def test_investor_summary(self):
        actor = Actor(actor_id="inv_001", actor_name="Investor", email="inv@example.com",
                      groups={Role.INVESTOR, Role.VERIFIED_INVESTOR})

        summary = permission_summary(actor)

        assert summary["role"] == "VerifiedInvestors"
        assert summary["groups"] == ["Investors", "VerifiedInvestors"]
        assert summary["permissions"]["can_invest"] is True
        assert summary["permissions"]["can_approve_kyc"] is False

    def test_no_groups(self):
        summary = permission_summary(Actor(actor_id="nobody", actor_name="Nobody"))

        assert summary["role"] == "Unknown"
        assert not any(summary["permissions"].values())
