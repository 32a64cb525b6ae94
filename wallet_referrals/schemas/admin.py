"""Pydantic schemas for admin referral operations."""

from typing import Literal
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class AdminReferrerAction(BaseModel):
    """Schema for acting on a referrer request."""
    referrer_id: UUID = Field(..., alias="referrerId")
    action: Literal["approve", "reject", "enable_notifications", "disable_notifications"]

    model_config = ConfigDict(populate_by_name=True)


class AdminCodeAction(BaseModel):
    """Schema for acting on a code request; ``reassign`` resolves an approval conflict."""
    code_id: int = Field(..., alias="codeId", ge=1)
    action: Literal["approve", "reject", "reassign"]

    model_config = ConfigDict(populate_by_name=True)


class AdminCheckResponse(BaseModel):
    is_admin: bool = Field(..., alias="isAdmin")

    model_config = ConfigDict(populate_by_name=True)
