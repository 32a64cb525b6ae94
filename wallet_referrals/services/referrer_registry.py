"""
Referrer registry and admin workflow.

Owns referrer and referral code records. A referrer goes
``none -> pending -> approved`` (or is rejected and deleted); approved
referrers create their own codes up to a fixed quota.

@module referrer_registry
@since 1.0.0
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, delete, func

from wallet_referrals.core.config import settings
from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.models import Referrer, ReferralCode, UserReferral
from wallet_referrals.services.code_generator import generate_unique_code, normalize_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryResult:
    """Outcome of a registry operation. Failures carry an error code, never raise."""
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None
    message: Optional[str] = None
    referrer: Optional[Referrer] = None
    code: Optional[ReferralCode] = None
    codes: List[ReferralCode] = field(default_factory=list)
    conflict: Optional[Dict[str, Any]] = None

    @classmethod
    def failed(cls, error: str, message: str, **kwargs) -> "RegistryResult":
        return cls(success=False, error=error, message=message, **kwargs)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_code(code: ReferralCode) -> Dict[str, Any]:
    return {
        "code": code.code,
        "label": code.label,
        "isActive": code.is_active,
        "expiresAt": _iso(code.expires_at),
        "usageCount": code.usage_count,
        "createdAt": _iso(code.created_at),
    }


class ReferrerRegistry:
    """
    Manages referrers and the codes they own.

    @class ReferrerRegistry
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession, cache: Optional[StatusCache] = None):
        self.db = db
        self.cache = cache or StatusCache()

    # ------------------------------------------------------------------
    # Lookups shared with the code request adapter
    # ------------------------------------------------------------------

    async def get_referrer_by_email(self, email: str, for_update: bool = False) -> Optional[Referrer]:
        stmt = select(Referrer).where(Referrer.email == email.lower())
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_referrer(self, referrer_id: str, for_update: bool = False) -> Optional[Referrer]:
        stmt = select(Referrer).where(Referrer.id == referrer_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_codes_for_referrer(self, referrer_id: str) -> List[ReferralCode]:
        stmt = (
            select(ReferralCode)
            .where(ReferralCode.referrer_id == referrer_id)
            .order_by(ReferralCode.created_at.desc(), ReferralCode.id.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_codes(self, referrer_id: str) -> int:
        stmt = select(func.count(ReferralCode.id)).where(ReferralCode.referrer_id == referrer_id)
        result = await self.db.execute(stmt)
        return result.scalar() or 0

    async def find_approved_code(self, code: str, for_update: bool = False) -> Optional[ReferralCode]:
        stmt = select(ReferralCode).where(
            ReferralCode.code == normalize_code(code),
            ReferralCode.is_approved.is_(True),
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def ensure_referrer(self, identity: AuthenticatedIdentity) -> Referrer:
        """Return the identity's referrer row, adding an unapproved one if missing (not committed)."""
        referrer = await self.get_referrer_by_email(identity.email, for_update=True)
        if referrer:
            return referrer

        referrer = Referrer(
            email=identity.email.lower(),
            user_id=identity.user_id,
            is_approved=False,
            can_send_notifications=False,
        )
        self.db.add(referrer)
        await self.db.flush()
        return referrer

    # ------------------------------------------------------------------
    # Referrer requests
    # ------------------------------------------------------------------

    async def request_referrer(self, identity: AuthenticatedIdentity) -> RegistryResult:
        """
        Ask to become a referrer.

        Repeated requests are idempotent: a pending requester stays pending and
        an approved one gets ``already_approved``.

        @param identity - Verified requester
        @returns RegistryResult with status pending or already_approved
        """
        existing = await self.get_referrer_by_email(identity.email)
        if existing:
            if existing.is_approved:
                return RegistryResult(success=True, status="already_approved", referrer=existing,
                                      message="You are already an approved referrer")
            return RegistryResult(success=True, status="pending", referrer=existing,
                                  message="Your referrer request is pending approval")

        referrer = Referrer(
            email=identity.email.lower(),
            user_id=identity.user_id,
            is_approved=False,
            can_send_notifications=False,
        )
        self.db.add(referrer)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request from the same identity won the insert
            await self.db.rollback()
            existing = await self.get_referrer_by_email(identity.email)
            if existing is None:
                raise
            return RegistryResult(success=True, status="pending", referrer=existing,
                                  message="Your referrer request is pending approval")

        await self.cache.invalidate(identity.email)
        logger.info(f"Referrer requested by {identity.email}")
        return RegistryResult(success=True, status="pending", referrer=referrer,
                              message="Your request to become a referrer has been submitted")

    async def get_status(self, identity: AuthenticatedIdentity) -> Dict[str, Any]:
        """Referrer status for the identity, served from the owner cache when fresh."""
        cached = await self.cache.get("referrer-status", identity.email)
        if cached is not None:
            return cached

        referrer = await self.get_referrer_by_email(identity.email)
        if referrer is None:
            payload: Dict[str, Any] = {"status": "none"}
        elif not referrer.is_approved:
            payload = {"status": "pending", "requestedAt": _iso(referrer.created_at)}
        else:
            codes = await self.get_codes_for_referrer(referrer.id)
            payload = {
                "status": "approved",
                "referrerId": referrer.id,
                "approvedAt": _iso(referrer.approved_at or referrer.updated_at),
                "canSendNotifications": referrer.can_send_notifications,
                "codes": [serialize_code(c) for c in codes],
            }

        await self.cache.set("referrer-status", identity.email, payload)
        return payload

    # ------------------------------------------------------------------
    # Codes owned by approved referrers
    # ------------------------------------------------------------------

    async def _approved_referrer(self, identity: AuthenticatedIdentity, for_update: bool = False) -> RegistryResult:
        referrer = await self.get_referrer_by_email(identity.email, for_update=for_update)
        if referrer is None:
            return RegistryResult.failed("not_referrer", "You are not a referrer")
        if not referrer.is_approved:
            return RegistryResult.failed("not_approved", "Your referrer account is pending approval")
        return RegistryResult(success=True, referrer=referrer)

    async def list_codes(self, identity: AuthenticatedIdentity) -> RegistryResult:
        check = await self._approved_referrer(identity)
        if not check.success:
            return check
        codes = await self.get_codes_for_referrer(check.referrer.id)
        return RegistryResult(success=True, referrer=check.referrer, codes=codes)

    async def create_code(
        self,
        identity: AuthenticatedIdentity,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> RegistryResult:
        """
        Create a generated code for an approved referrer.

        The referrer row is locked so concurrent creations cannot both pass the
        quota check. Exceeding the quota is rejected, never queued.

        @param identity - Verified referrer
        @param label - Optional campaign label
        @param expires_at - Optional code expiry
        @returns RegistryResult carrying the new code
        """
        try:
            check = await self._approved_referrer(identity, for_update=True)
            if not check.success:
                return check
            referrer = check.referrer

            max_codes = settings.MAX_CODES_PER_REFERRER
            if await self.count_codes(referrer.id) >= max_codes:
                return RegistryResult.failed(
                    "limit_reached", f"You have reached the maximum of {max_codes} codes"
                )

            now = utcnow()
            code = ReferralCode(
                code=await generate_unique_code(self.db),
                referrer_id=referrer.id,
                label=label or None,
                is_approved=True,
                is_active=True,
                expires_at=expires_at,
                usage_count=0,
                created_at=now,
                approved_at=now,
            )
            self.db.add(code)
            await self.db.commit()
        except IntegrityError:
            # The generated string was approved elsewhere between check and commit
            await self.db.rollback()
            logger.warning(f"Generated code collided at commit for {identity.email}")
            return RegistryResult.failed("code_taken", "Generated code was taken, please retry")
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(identity.email)
        logger.info(f"Created referral code {code.code} for referrer {referrer.id}")
        return RegistryResult(success=True, referrer=referrer, code=code)

    async def update_code(
        self,
        identity: AuthenticatedIdentity,
        code: str,
        is_active: Optional[bool] = None,
        label: Optional[str] = None,
    ) -> RegistryResult:
        """Toggle or relabel a code. Only the owning identity may do so."""
        check = await self._approved_referrer(identity)
        if not check.success:
            return check
        referrer = check.referrer

        stmt = select(ReferralCode).where(ReferralCode.code == normalize_code(code))
        result = await self.db.execute(stmt)
        records = list(result.scalars().all())
        if not records:
            return RegistryResult.failed("not_found", "Code not found")

        owned = [r for r in records if r.referrer_id == referrer.id]
        if not owned:
            logger.warning(f"{identity.email} attempted to modify code {code} they do not own")
            return RegistryResult.failed("forbidden", "You don't own this code")

        record = owned[0]
        if is_active is not None:
            record.is_active = is_active
        if label is not None:
            record.label = label or None

        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(identity.email)
        return RegistryResult(success=True, referrer=referrer, code=record)

    # ------------------------------------------------------------------
    # Admin workflow
    # ------------------------------------------------------------------

    async def approve_referrer(self, referrer_id: str) -> RegistryResult:
        """Approve a pending referrer. Re-approval is a no-op reporting ``already_approved``."""
        referrer = await self.get_referrer(referrer_id, for_update=True)
        if referrer is None:
            return RegistryResult.failed("not_found", "Referrer not found")

        if referrer.is_approved:
            return RegistryResult(success=True, status="already_approved", referrer=referrer,
                                  message="Referrer is already approved")

        now = utcnow()
        referrer.is_approved = True
        referrer.approved_at = now
        referrer.updated_at = now
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(referrer.email)
        logger.info(f"Approved referrer {referrer_id}")
        return RegistryResult(success=True, status="approved", referrer=referrer)

    async def reject_referrer(self, referrer_id: str) -> RegistryResult:
        """Reject a pending referrer, deleting it and any code requests it holds."""
        referrer = await self.get_referrer(referrer_id, for_update=True)
        if referrer is None:
            return RegistryResult.failed("not_found", "Referrer not found")

        if referrer.is_approved:
            return RegistryResult.failed("not_pending", "Approved referrers cannot be rejected")

        email = referrer.email
        try:
            await self.db.execute(delete(ReferralCode).where(ReferralCode.referrer_id == referrer_id))
            await self.db.execute(delete(Referrer).where(Referrer.id == referrer_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(email)
        logger.info(f"Rejected referrer {referrer_id}")
        return RegistryResult(success=True, status="rejected")

    async def set_notifications(self, referrer_id: str, enabled: bool) -> RegistryResult:
        referrer = await self.get_referrer(referrer_id)
        if referrer is None:
            return RegistryResult.failed("not_found", "Referrer not found")

        if enabled and not referrer.is_approved:
            return RegistryResult.failed(
                "not_approved", "Cannot enable notifications for unapproved referrer"
            )

        referrer.can_send_notifications = enabled
        referrer.updated_at = utcnow()
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(referrer.email)
        status = "notifications_enabled" if enabled else "notifications_disabled"
        return RegistryResult(success=True, status=status, referrer=referrer)

    async def list_referrers(self) -> Dict[str, List[Dict[str, Any]]]:
        """
        All referrers split into pending and approved, with code and referral counts.

        @returns {"pending": [...], "approved": [...]}
        """
        referrers_result = await self.db.execute(select(Referrer).order_by(Referrer.created_at.desc()))
        referrers = list(referrers_result.scalars().all())

        code_counts_result = await self.db.execute(
            select(ReferralCode.referrer_id, func.count(ReferralCode.id))
            .group_by(ReferralCode.referrer_id)
        )
        code_counts = {referrer_id: count for referrer_id, count in code_counts_result.all()}

        referral_counts_result = await self.db.execute(
            select(UserReferral.referrer_id, func.count(UserReferral.id))
            .group_by(UserReferral.referrer_id)
        )
        referral_counts = {referrer_id: count for referrer_id, count in referral_counts_result.all()}

        pending = [
            {
                "referrerId": r.id,
                "email": r.email,
                "requestedAt": _iso(r.created_at),
            }
            for r in referrers if not r.is_approved
        ]
        approved = [
            {
                "referrerId": r.id,
                "email": r.email,
                "approvedAt": _iso(r.approved_at or r.updated_at),
                "codeCount": code_counts.get(r.id, 0),
                "totalReferrals": referral_counts.get(r.id, 0),
                "canSendNotifications": r.can_send_notifications,
            }
            for r in referrers if r.is_approved
        ]
        return {"pending": pending, "approved": approved}
