"""
Pydantic models for input validation and output serialization.

Validation rules:
- Usernames: 3-50 chars, letters, digits, dot, dash, underscore
- Emails: syntax checked by email-validator (no DNS lookup), lower-cased
- Passwords: 6-128 chars
- API key names: 1-100 chars, trimmed
- Key expiry: 1-3650 days or omitted for keys that never expire
"""

import re
from datetime import datetime
from typing import Dict, List, Optional

from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, ConfigDict, Field, field_validator

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class RegisterRequest(BaseModel):
    """Request model for account registration."""

    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=255)
    password: str = Field(..., min_length=6, max_length=128)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        v = v.strip()
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Username may only contain letters, digits, '.', '-' and '_'")
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        try:
            validated = validate_email(v.strip(), check_deliverability=False)
        except EmailNotValidError as e:
            raise ValueError(f"Invalid email address: {e}")
        return validated.normalized.lower()


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class TokenResponse(BaseModel):
    success: bool = True
    message: str
    token: str


class UserProfile(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    created_at: datetime


class ApiKeyCreateRequest(BaseModel):
    """
    Request model for issuing an API key.

    ``expiryDays`` is accepted in camelCase as sent by the web client.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1, max_length=100, description="Label for the key")
    expiry_days: Optional[int] = Field(
        default=None,
        alias="expiryDays",
        ge=1,
        le=3650,
        description="Days until the key expires; omit for no expiry",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key name is required")
        return v


class ApiKeyOut(BaseModel):
    """API key as returned to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    key: str
    name: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool
    last_used_at: Optional[datetime] = None
    usage_count: int = 0

    @field_validator("key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        return v.strip()


class UsageEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    api_key_id: int
    endpoint: str
    request_timestamp: datetime


class UsageSummaryItem(BaseModel):
    endpoint: str
    count: int


class UsageLogOut(BaseModel):
    """Usage entry joined with the key it was recorded against."""

    usage_id: int
    api_key_id: int
    endpoint: str
    request_timestamp: datetime
    key_name: str
    key_value: str


class CountryName(BaseModel):
    common: str
    official: str


class CountryFlags(BaseModel):
    png: str = ""
    svg: str = ""
    alt: str = ""


class Country(BaseModel):
    """Country data as served to API key holders."""

    name: CountryName
    currencies: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    capital: List[str] = Field(default_factory=list)
    languages: Dict[str, str] = Field(default_factory=dict)
    flags: CountryFlags = Field(default_factory=CountryFlags)


class CountryResponse(BaseModel):
    success: bool = True
    count: int
    data: List[Country]
