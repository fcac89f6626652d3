from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------- Requests ----------


class AgeGateIn(_CamelModel):
    user_id: str = Field(..., min_length=1, alias="userId")
    birthdate: Optional[str] = Field(default=None, description="ISO date YYYY-MM-DD")
    country_code: Optional[str] = Field(default=None, alias="countryCode")


class ParentalAttestationIn(_CamelModel):
    user_id: str = Field(..., min_length=1, alias="userId")
    parent_email: str = Field(default="", alias="parentEmail")
    parent_full_name: str = Field(default="", alias="parentFullName")
    relationship_to_child: str = Field(default="", alias="relationshipToChild")
    attestation_accepted: StrictBool = Field(default=False, alias="attestationAccepted")


class SessionIn(_CamelModel):
    user_id: str = Field(..., min_length=1, alias="userId")


# ---------- Responses ----------


class AgeGateOut(_CamelModel):
    user_id: str = Field(..., alias="userId")
    calculated_age: int = Field(..., alias="calculatedAge")
    is_under_13: bool = Field(..., alias="isUnder13")
    next_step: str = Field(..., alias="nextStep")


class ParentalAttestationOut(_CamelModel):
    consent_id: str = Field(..., alias="consentId")
    child_user_id: str = Field(..., alias="childUserId")
    consent_status: str = Field(..., alias="consentStatus")
    consent_method: str = Field(..., alias="consentMethod")
    approved_at: datetime = Field(..., alias="approvedAt")
    expires_at: datetime = Field(..., alias="expiresAt")
    policy_version: str = Field(..., alias="policyVersion")


class OnboardingStatusOut(_CamelModel):
    user_id: str = Field(..., alias="userId")
    state: str
    access_allowed: bool = Field(..., alias="accessAllowed")
    calculated_age: Optional[int] = Field(default=None, alias="calculatedAge")
    next_step: Optional[str] = Field(default=None, alias="nextStep")
    policy_version: Optional[str] = Field(default=None, alias="policyVersion")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")
