"""
Authentication and authorization for the investor records platform.

This module provides JWT token validation, the role (group) model with its
permission sets, and the identity directory that plays the identity/role
provider. The current caller is resolved once at the HTTP boundary and passed
explicitly into every service call as an ``Actor``.
"""

import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

import jwt
from jwt.exceptions import ImmatureSignatureError
from fastapi import HTTPException, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel, Field
import structlog

from .config import settings

logger = structlog.get_logger(__name__)

# Security scheme for FastAPI
security = HTTPBearer()


class Role(Enum):
    """Identity-provider groups an actor can belong to."""
    SYSTEM = "System"
    SUPER_ADMIN = "SuperAdmin"
    ADMIN = "Admin"
    COMPLIANCE = "Compliance"
    PROPERTY_MANAGER = "PropertyManager"
    SUPPORT = "Support"
    VERIFIED_INVESTOR = "VerifiedInvestors"
    INVESTOR = "Investors"


# Highest privilege first
ROLE_PRECEDENCE: List[Role] = [
    Role.SYSTEM,
    Role.SUPER_ADMIN,
    Role.ADMIN,
    Role.COMPLIANCE,
    Role.PROPERTY_MANAGER,
    Role.SUPPORT,
    Role.VERIFIED_INVESTOR,
    Role.INVESTOR,
]

# Groups that can be granted through role management (System is internal)
ASSIGNABLE_ROLES: FrozenSet[Role] = frozenset(ROLE_PRECEDENCE) - {Role.SYSTEM}

ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.SUPER_ADMIN, Role.ADMIN})
COMPLIANCE_ROLES: FrozenSet[Role] = ADMIN_ROLES | {Role.COMPLIANCE}
PROPERTY_MANAGER_ROLES: FrozenSet[Role] = ADMIN_ROLES | {Role.PROPERTY_MANAGER}
STAFF_ROLES: FrozenSet[Role] = COMPLIANCE_ROLES | {Role.PROPERTY_MANAGER, Role.SUPPORT}


class Permission(Enum):
    """System permissions."""
    # KYC permissions
    APPROVE_KYC = "approve_kyc"
    REJECT_KYC = "reject_kyc"
    VIEW_KYC_QUEUE = "view_kyc_queue"

    # Investor permissions
    VIEW_ALL_INVESTORS = "view_all_investors"
    MANAGE_USERS = "manage_users"
    INVEST = "invest"

    # Property permissions
    CREATE_PROPERTIES = "create_properties"
    UPDATE_PROPERTIES = "update_properties"

    # Administrative permissions
    MANAGE_ROLES = "manage_roles"
    DELETE_DATA = "delete_data"
    ACCESS_AUDIT_LOGS = "access_audit_logs"
    BULK_OPERATIONS = "bulk_operations"


# Role-based permission mapping
ROLE_PERMISSIONS: Dict[Role, Set[Permission]] = {
    Role.SYSTEM: set(Permission),
    Role.SUPER_ADMIN: set(Permission),
    Role.ADMIN: {
        Permission.APPROVE_KYC,
        Permission.REJECT_KYC,
        Permission.VIEW_KYC_QUEUE,
        Permission.VIEW_ALL_INVESTORS,
        Permission.MANAGE_USERS,
        Permission.CREATE_PROPERTIES,
        Permission.UPDATE_PROPERTIES,
        Permission.ACCESS_AUDIT_LOGS,
        Permission.BULK_OPERATIONS,
    },
    Role.COMPLIANCE: {
        Permission.APPROVE_KYC,
        Permission.REJECT_KYC,
        Permission.VIEW_KYC_QUEUE,
        Permission.VIEW_ALL_INVESTORS,
        Permission.BULK_OPERATIONS,
    },
    Role.PROPERTY_MANAGER: {
        Permission.UPDATE_PROPERTIES,
    },
    Role.SUPPORT: set(),
    Role.VERIFIED_INVESTOR: {
        Permission.INVEST,
    },
    Role.INVESTOR: set(),
}


class Actor(BaseModel):
    """A caller of the platform: an investor, a staff member or the system."""
    actor_id: str = Field(..., description="Unique actor identifier")
    actor_name: str = Field(..., description="Display name of the actor")
    email: Optional[str] = Field(None, description="Contact email of the actor")
    groups: Set[Role] = Field(default_factory=set, description="Identity-provider groups")
    is_active: bool = Field(True, description="Whether the actor is active")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def role(self) -> Optional[Role]:
        """Highest-privilege group held by the actor."""
        for role in ROLE_PRECEDENCE:
            if role in self.groups:
                return role
        return None

    @property
    def identity(self) -> str:
        """Identity recorded as ``updated_by`` on committed versions."""
        return self.email or self.actor_id

    @property
    def permissions(self) -> Set[Permission]:
        granted: Set[Permission] = set()
        for role in self.groups:
            granted |= ROLE_PERMISSIONS.get(role, set())
        return granted

    def has_any_role(self, roles: Iterable[Role]) -> bool:
        return bool(self.groups & set(roles))


def workflow_actor(actor: Actor) -> Actor:
    """
    Actor used for commits driven by a workflow on behalf of ``actor``.

    The caller's own authority must already have been checked; the returned
    actor keeps the caller's identity for the audit trail but carries the
    System role so workflow-managed fields pass the field policy.
    """
    return Actor(
        actor_id=actor.actor_id,
        actor_name=actor.actor_name,
        email=actor.email,
        groups={Role.SYSTEM},
    )


class TokenData(BaseModel):
    """JWT token payload data."""
    sub: str = Field(..., description="Subject (actor_id)")
    groups: List[str] = Field(default_factory=list, description="Group names")
    exp: datetime = Field(..., description="Expiration time")
    iat: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Issued at time")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class JWTManager:
    """JWT token management for authentication."""

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        """Initialize JWT manager."""
        self.secret_key = secret_key
        self.algorithm = algorithm

    def create_access_token(
        self,
        actor: Actor,
        expires_delta: Optional[timedelta] = None
    ) -> str:
        """
        Create a JWT access token for an actor.

        Args:
            actor: Actor to create token for
            expires_delta: Optional expiration time delta

        Returns:
            JWT token string
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))

        payload = {
            "sub": actor.actor_id,
            "groups": sorted(role.value for role in actor.groups),
            "exp": int(expire.timestamp()),
            "iat": int(now.timestamp()),
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

        logger.info("Created access token", actor_id=actor.actor_id)

        return token

    def verify_token(self, token: str) -> TokenData:
        """
        Verify and decode a JWT token.

        Raises:
            AuthenticationError: If token is invalid
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                options={"verify_iat": False}
            )

            payload["exp"] = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
            payload["iat"] = datetime.fromtimestamp(payload["iat"], tz=timezone.utc)

            token_data = TokenData(**payload)

            logger.debug("Token verified successfully", actor_id=token_data.sub)

            return token_data

        except jwt.ExpiredSignatureError:
            logger.warning("Token has expired")
            raise AuthenticationError("Token has expired")
        except ImmatureSignatureError:
            logger.warning("Token not yet valid")
            raise AuthenticationError("Token not yet valid")
        except jwt.InvalidTokenError as e:
            logger.warning("Invalid token", error=str(e))
            raise AuthenticationError("Invalid token")
        except Exception as e:
            logger.error("Token verification failed", error=str(e))
            raise AuthenticationError("Token verification failed")


class IdentityDirectory:
    """
    Directory of actors and their group memberships.

    Stands in for the external identity provider: the services read roles from
    it, elevate investors after KYC approval and count role holders before a
    role is removed.
    """

    def __init__(self):
        self._actors: Dict[str, Actor] = {}
        self._lock = threading.Lock()
        self._initialize_default_actors()

    def _initialize_default_actors(self):
        system_actor = Actor(
            actor_id="system",
            actor_name="System",
            groups={Role.SYSTEM},
        )
        self._actors[system_actor.actor_id] = system_actor

    def get_actor(self, actor_id: str) -> Optional[Actor]:
        """Get actor by ID."""
        return self._actors.get(actor_id)

    def register_actor(self, actor: Actor) -> Actor:
        """Register a new actor."""
        with self._lock:
            if actor.actor_id in self._actors:
                raise ValueError(f"Actor with ID {actor.actor_id} already exists")
            self._actors[actor.actor_id] = actor

        logger.info("Registered actor", actor_id=actor.actor_id,
                    groups=sorted(role.value for role in actor.groups))
        return actor

    def _require(self, actor_id: str) -> Actor:
        actor = self._actors.get(actor_id)
        if actor is None:
            raise KeyError(f"Actor {actor_id} not found")
        return actor

    def add_to_group(self, actor_id: str, role: Role) -> Set[Role]:
        """Add an actor to a group and return the resulting groups."""
        with self._lock:
            actor = self._require(actor_id)
            actor.groups = set(actor.groups) | {role}
            actor.updated_at = datetime.now(timezone.utc)
            groups = set(actor.groups)

        logger.info("Added actor to group", actor_id=actor_id, group=role.value)
        return groups

    def remove_from_group(self, actor_id: str, role: Role) -> Set[Role]:
        """Remove an actor from a group and return the resulting groups."""
        with self._lock:
            actor = self._require(actor_id)
            actor.groups = set(actor.groups) - {role}
            actor.updated_at = datetime.now(timezone.utc)
            groups = set(actor.groups)

        logger.info("Removed actor from group", actor_id=actor_id, group=role.value)
        return groups

    def groups_for(self, actor_id: str) -> Set[Role]:
        return set(self._require(actor_id).groups)

    def list_group_members(self, role: Role) -> List[Actor]:
        """List active actors belonging to a group."""
        return [
            actor for actor in self._actors.values()
            if role in actor.groups and actor.is_active
        ]

    def disable_actor(self, actor_id: str) -> None:
        """Prevent an actor from authenticating."""
        with self._lock:
            actor = self._require(actor_id)
            actor.is_active = False
            actor.updated_at = datetime.now(timezone.utc)

        logger.info("Disabled actor", actor_id=actor_id)


# Global instances
jwt_manager = JWTManager(settings.SECRET_KEY, settings.ALGORITHM)
identity_directory = IdentityDirectory()


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> Actor:
    """
    Dependency to get the current authenticated user.

    Raises:
        HTTPException: If authentication fails
    """
    try:
        token_data = jwt_manager.verify_token(credentials.credentials)
        actor = identity_directory.get_actor(token_data.sub)

        if not actor:
            logger.warning("Actor not found", actor_id=token_data.sub)
            raise HTTPException(status_code=401, detail="Actor not found")

        if not actor.is_active:
            logger.warning("Inactive actor attempted access", actor_id=actor.actor_id)
            raise HTTPException(status_code=401, detail="Inactive actor")

        return actor

    except AuthenticationError as e:
        logger.warning("Authentication failed", error=str(e))
        raise HTTPException(status_code=401, detail=str(e))
    except HTTPException:
        raise
    except Exception as e:
        logger.error("Unexpected authentication error", error=str(e))
        raise HTTPException(status_code=401, detail="Authentication failed")


def require_permissions(*required_permissions: Permission):
    """
    Require specific permissions for an endpoint.

    Returns:
        FastAPI dependency function
    """
    def permission_checker(current_user: Actor = Depends(get_current_user)) -> Actor:
        missing_permissions = set(required_permissions) - current_user.permissions

        if missing_permissions:
            missing_values = sorted(perm.value for perm in missing_permissions)
            logger.warning(
                "Access denied - insufficient permissions",
                actor_id=current_user.actor_id,
                missing=missing_values
            )
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient permissions. Missing: {missing_values}"
            )

        return current_user

    return permission_checker


def require_roles(*required_roles: Role):
    """
    Require membership of at least one of the given groups for an endpoint.

    Returns:
        FastAPI dependency function
    """
    def role_checker(current_user: Actor = Depends(get_current_user)) -> Actor:
        if not current_user.has_any_role(required_roles):
            required_role_values = [role.value for role in required_roles]
            logger.warning(
                "Access denied - insufficient role",
                actor_id=current_user.actor_id,
                required_roles=required_role_values
            )
            raise HTTPException(
                status_code=403,
                detail=f"Insufficient role. Required: {required_role_values}"
            )

        return current_user

    return role_checker


def permission_summary(actor: Actor) -> Dict[str, object]:
    """Capabilities of an actor, as shown to front-end clients."""
    granted = actor.permissions
    return {
        "user_id": actor.actor_id,
        "email": actor.email or "",
        "role": actor.role.value if actor.role else "Unknown",
        "groups": sorted(role.value for role in actor.groups),
        "permissions": {
            "can_approve_kyc": Permission.APPROVE_KYC in granted,
            "can_reject_kyc": Permission.REJECT_KYC in granted,
            "can_manage_users": Permission.MANAGE_USERS in granted,
            "can_manage_roles": Permission.MANAGE_ROLES in granted,
            "can_delete_data": Permission.DELETE_DATA in granted,
            "can_update_properties": Permission.UPDATE_PROPERTIES in granted,
            "can_create_properties": Permission.CREATE_PROPERTIES in granted,
            "can_view_all_investors": Permission.VIEW_ALL_INVESTORS in granted,
            "can_access_audit_logs": Permission.ACCESS_AUDIT_LOGS in granted,
            "can_invest": Permission.INVEST in granted,
        },
    }
