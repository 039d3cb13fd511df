"""
coursegate/models/activation.py

Persisted entitlement records.

Field names are snake_case in Python and camelCase on disk so the stored
documents keep the layout the administration tooling already reads.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat().replace("+00:00", "Z")


class ChapterTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class DeviceFingerprint(BaseModel):
    """Truncated device description captured at activation time."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_agent_snippet: str = Field(default="", alias="userAgent")
    language: Optional[str] = None
    platform: Optional[str] = None
    timestamp: int = Field(description="epoch milliseconds")


class ActivationRecord(BaseModel):
    """
    Proof of premium entitlement.

    Created once per successful activation and never mutated; a later
    activation overwrites the whole record.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    is_activated: bool = Field(alias="isPremiumActivated")
    activation_date: str = Field(alias="activationDate")
    obfuscated_code: str = Field(alias="activationKey")
    device_fingerprint: DeviceFingerprint = Field(alias="deviceInfo")


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    code: str = Field(alias="key")
    email: str = "Not provided"
    timestamp: str
    user_agent: str = Field(default="", alias="userAgent")
    source: str = "Unknown"
    anonymous_user_id: str = Field(alias="userId")
    approximate_location: str = Field(default="Unknown", alias="location")
    language: Optional[str] = None
    platform: Optional[str] = None
    referrer: str = "Direct"


class AdminKeyEntry(BaseModel):
    """One code's row in the admin key ledger."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    generated: Any = "Unknown"
    activated: bool = False
    activation_date: Optional[str] = Field(default=None, alias="activationDate")
    activation_details: Optional[Dict[str, Any]] = Field(default=None, alias="activationDetails")
    batch_id: Any = Field(default="Unknown", alias="batchId")
