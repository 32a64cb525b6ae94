"""
Pydantic schemas for referral operations.

Request bodies use camelCase on the wire. Each operation has one schema and
the first violation rejects the request.

@module referrals
@since 1.0.0
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from wallet_referrals.services.code_generator import CUSTOM_CODE_MAX_LENGTH

CODE_PATTERN = r"^[A-Za-z0-9_-]+$"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class Fingerprint(CamelModel):
    """Client-reported secondary matching signals."""
    screen_resolution: Optional[str] = Field(None, alias="screenResolution", max_length=20)


class ReferralData(CamelModel):
    """Referral parameters captured from a visited link."""
    ref: str = Field(..., min_length=1, max_length=CUSTOM_CODE_MAX_LENGTH, pattern=CODE_PATTERN)
    tag: Optional[str] = Field(None, max_length=255)
    source: Optional[str] = Field(None, max_length=255)
    full_params: Dict[str, str] = Field(default_factory=dict, alias="fullParams")
    captured_at: datetime = Field(..., alias="capturedAt")


class TrackVisitRequest(CamelModel):
    referral_data: ReferralData = Field(..., alias="referralData")
    fingerprint: Optional[Fingerprint] = None


class MatchVisitRequest(CamelModel):
    fingerprint: Optional[Fingerprint] = None


class CodeRequest(CamelModel):
    """Schema for requesting a code; omit ``code`` to have one generated."""
    code: Optional[str] = Field(
        None, min_length=1, max_length=CUSTOM_CODE_MAX_LENGTH, pattern=CODE_PATTERN
    )


class ConvertRequest(CamelModel):
    """Schema for attributing the caller at signup, from a code or matched referral data."""
    code: Optional[str] = Field(
        None, min_length=1, max_length=CUSTOM_CODE_MAX_LENGTH, pattern=CODE_PATTERN
    )
    referral_data: Optional[ReferralData] = Field(None, alias="referralData")
    captured_at: Optional[datetime] = Field(None, alias="capturedAt")
    wallet_address: Optional[str] = Field(None, alias="walletAddress", max_length=255)

    @model_validator(mode="after")
    def require_code_source(self) -> "ConvertRequest":
        if not self.code and self.referral_data is None:
            raise ValueError("Code or referralData is required")
        return self


class CreateCodeRequest(CamelModel):
    label: Optional[str] = Field(None, max_length=100)
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")


class UpdateCodeRequest(CamelModel):
    code: str = Field(..., min_length=1, max_length=CUSTOM_CODE_MAX_LENGTH)
    is_active: Optional[bool] = Field(None, alias="isActive")
    label: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def require_change(self) -> "UpdateCodeRequest":
        if self.is_active is None and self.label is None:
            raise ValueError("Nothing to update")
        return self


class AvailabilityResponse(BaseModel):
    available: bool


class ReferralCodeResponse(CamelModel):
    """Schema for a referral code in API responses."""
    code: str
    label: Optional[str] = None
    is_active: bool = Field(..., alias="isActive")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    usage_count: int = Field(..., alias="usageCount")
    created_at: datetime = Field(..., alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


class ReferralCodeListResponse(BaseModel):
    codes: List[ReferralCodeResponse]
