import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy import JSON, Boolean, DateTime, String, Integer, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.dialects.postgresql import JSONB
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.database import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


class Admin(Base):
    """Emails with access to the admin workflow"""
    __tablename__ = "admins"

    email: Mapped[str] = mapped_column(String(255), primary_key=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class Referrer(Base):
    """People who may share referral codes once approved"""
    __tablename__ = "referrers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    can_send_notifications: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    codes: Mapped[List["ReferralCode"]] = relationship("ReferralCode", back_populates="referrer", passive_deletes=True)


class ReferralCode(Base):
    """
    Referral codes owned by referrers.

    Unapproved requests for the same string may coexist; only one approved
    record per string is allowed.
    """
    __tablename__ = "referral_codes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    referrer_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("referrers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    label: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    referrer: Mapped["Referrer"] = relationship("Referrer", back_populates="codes")

    __table_args__ = (
        Index(
            "uq_referral_codes_approved_code",
            "code",
            unique=True,
            postgresql_where=text("is_approved = true"),
            sqlite_where=text("is_approved = 1"),
        ),
    )


class UserReferral(Base):
    """One attribution per referred user (first attribution wins)"""
    __tablename__ = "user_referrals"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    wallet_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    code_used: Mapped[str] = mapped_column(String(20), index=True, nullable=False)
    referrer_id: Mapped[str] = mapped_column(String(36), ForeignKey("referrers.id"), nullable=False, index=True)
    custom_tag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_medium: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    utm_campaign: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_params: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    referred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    converted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PendingReferralVisit(Base):
    """Unattributed referral click awaiting a later signup from the same fingerprint"""
    __tablename__ = "pending_referral_visits"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    referral_code: Mapped[str] = mapped_column(String(20), nullable=False)
    ip_address: Mapped[str] = mapped_column(String(64), nullable=False)
    user_agent: Mapped[str] = mapped_column(String(512), nullable=False)
    screen_resolution: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    custom_tag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    full_params: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    __table_args__ = (
        Index("ix_pending_referral_visits_ip_expires", "ip_address", "expires_at"),
    )
