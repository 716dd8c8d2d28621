"""
Record versioning Pydantic models for request/response validation.

This module contains the version record returned by the versioned store and
the request/response schemas used by the investor and property routers.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class EntityType(Enum):
    """Discriminator selecting the permission and critical-field rules."""
    INVESTOR = "INVESTOR"
    PROPERTY = "PROPERTY"
    INVESTMENT = "INVESTMENT"
    TRANSACTION = "TRANSACTION"


class CurrentFlag(Enum):
    CURRENT = "CURRENT"
    HISTORICAL = "HISTORICAL"


class KYCStatus(str, Enum):
    """Verification status of an investor within one review cycle."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    MORE_INFO_REQUIRED = "MORE_INFO_REQUIRED"


class AccountStatus(str, Enum):
    """Investor account status values."""
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CLOSED = "CLOSED"


class AMLCheckStatus(str, Enum):
    """Anti-money-laundering screening status values."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    CLEAR = "CLEAR"
    FLAGGED = "FLAGGED"


class EntityVersion(BaseModel):
    """One committed version of an entity."""
    entity_id: str = Field(..., description="Stable entity identifier")
    entity_type: EntityType = Field(..., description="Entity discriminator")
    version: int = Field(..., ge=1, description="Version number, contiguous per entity")
    is_current: CurrentFlag = Field(..., description="CURRENT for exactly one version per entity")
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Full business snapshot")
    changed_fields: List[str] = Field(default_factory=list, description="Attributes differing from the previous version")
    change_reason: Optional[str] = Field(None, description="Justification for this version")
    previous_version: Optional[int] = Field(None, description="Version this one supersedes")
    updated_at: datetime = Field(..., description="Commit timestamp")
    updated_by: str = Field(..., description="Identity of the committing actor")

    model_config = {"from_attributes": True}

    @field_validator("updated_at")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        # SQLite hands back naive timestamps
        return v if v.tzinfo else v.replace(tzinfo=timezone.utc)

    def get(self, attribute: str, default: Any = None) -> Any:
        return self.attributes.get(attribute, default)


class FieldChange(BaseModel):
    """Old and new value of one changed attribute."""
    field: str
    old_value: Any = None
    new_value: Any = None


class VersionTimelineEntry(BaseModel):
    """One version in an entity's change timeline."""
    version: int
    timestamp: datetime
    user: str
    reason: Optional[str]
    is_current: bool
    changes: List[FieldChange] = Field(default_factory=list)


class VersionHistory(BaseModel):
    """Change timeline of an entity, newest version first."""
    entity_id: str
    entity_type: EntityType
    current_version: int
    total_versions: int
    timeline: List[VersionTimelineEntry]


class RecordPage(BaseModel):
    """One page of current versions."""
    items: List[EntityVersion]
    total: int = Field(..., ge=0, description="Current versions matching the filters")
    limit: int
    offset: int


class CategoryCount(BaseModel):
    name: str
    count: int


class InvestorStats(BaseModel):
    """Counts over the current investor records."""
    total: int = 0
    active: int = 0
    pending_verification: int = 0
    suspended: int = 0
    closed: int = 0
    by_tier: List[CategoryCount] = Field(default_factory=list)
    by_category: List[CategoryCount] = Field(default_factory=list)


def _validate_phone(v):
    if v and not v.replace('+', '').replace('-', '').replace(' ', '').replace('(', '').replace(')', '').isdigit():
        raise ValueError('Phone number must contain only digits and common separators')
    return v


class InvestorRegistration(BaseModel):
    """Schema for registering a new investor."""
    first_name: str = Field(..., min_length=1, max_length=255, description="Investor first name")
    last_name: str = Field(..., min_length=1, max_length=255, description="Investor last name")
    email: EmailStr = Field(..., description="Investor email address")
    phone: Optional[str] = Field(None, max_length=50, description="Investor phone number")
    address: Optional[str] = Field(None, max_length=1000, description="Investor postal address")

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _validate_phone(v)


class InvestorUpdate(BaseModel):
    """Schema for updating investor data. Unset fields are left unchanged."""
    first_name: Optional[str] = Field(None, min_length=1, max_length=255)
    last_name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=1000)
    communication_preferences: Optional[Dict[str, Any]] = None
    bank_accounts: Optional[List[Dict[str, Any]]] = None

    # Restricted fields
    email: Optional[EmailStr] = None
    kyc_status: Optional[KYCStatus] = None
    aml_check_status: Optional[AMLCheckStatus] = None
    sanctions_check_status: Optional[str] = None
    is_pep: Optional[bool] = None
    account_status: Optional[AccountStatus] = None
    account_tier: Optional[str] = None
    investor_category: Optional[str] = None
    admin_notes: Optional[str] = None

    change_reason: Optional[str] = Field(None, max_length=1000, description="Justification, required for critical fields")
    expected_version: Optional[int] = Field(None, ge=1, description="Version the caller based this change on")

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _validate_phone(v)


class PropertyCreate(BaseModel):
    """Schema for creating a property."""
    property_name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    address_line1: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=255)
    postcode: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field("United Kingdom", max_length=100)
    property_type: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    purchase_price: Optional[float] = None
    current_value: Optional[float] = None
    total_shares: Optional[int] = None
    price_per_share: Optional[float] = None
    target_funding_amount: Optional[float] = None


class PropertyUpdate(BaseModel):
    """Schema for updating a property. Unset fields are left unchanged."""
    property_name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    address_line1: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=255)
    postcode: Optional[str] = Field(None, max_length=20)
    country: Optional[str] = Field(None, max_length=100)
    property_type: Optional[str] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[int] = None
    square_feet: Optional[int] = None
    estimated_rental_income: Optional[float] = None
    images: Optional[List[str]] = None
    features: Optional[List[str]] = None
    amenities: Optional[List[str]] = None
    risk_level: Optional[str] = None

    # Admin only
    status: Optional[str] = None
    listing_status: Optional[str] = None
    purchase_price: Optional[float] = None
    current_value: Optional[float] = None
    total_shares: Optional[int] = None
    price_per_share: Optional[float] = None
    target_funding_amount: Optional[float] = None
    notes: Optional[str] = None

    change_reason: Optional[str] = Field(None, max_length=1000)
    expected_version: Optional[int] = Field(None, ge=1)
