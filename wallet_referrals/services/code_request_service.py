"""
Single-code-per-user requests on top of the referrer registry.

Users ask for one code (self-chosen or generated) and an admin approves
it. Requests are stored as unapproved ``ReferralCode`` rows owned by an
unapproved ``Referrer``, so both request styles share one set of tables.

Unapproved duplicates of the same string may coexist; the approving
transaction re-checks that no other owner holds an approved copy.

@module code_request_service
@since 1.0.0
"""

import logging
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError
from sqlalchemy import select, delete, func

from wallet_referrals.core.security import AuthenticatedIdentity
from wallet_referrals.core.status_cache import StatusCache
from wallet_referrals.core.timeutils import utcnow
from wallet_referrals.db.models import Referrer, ReferralCode
from wallet_referrals.services.code_generator import generate_unique_code, is_valid_custom_code, normalize_code
from wallet_referrals.services.referrer_registry import RegistryResult, ReferrerRegistry, _iso

logger = logging.getLogger(__name__)

CONFLICT_OPTIONS = ["reject", "reassign"]


class CodeRequestService:
    """
    Request/approve workflow for a user's own referral code.

    @class CodeRequestService
    @since 1.0.0
    """

    def __init__(self, db: AsyncSession, cache: Optional[StatusCache] = None):
        self.db = db
        self.registry = ReferrerRegistry(db, cache)
        self.cache = self.registry.cache

    async def request_code(self, identity: AuthenticatedIdentity, code: Optional[str] = None) -> RegistryResult:
        """
        Request a code for the identity.

        @param identity - Verified requester
        @param code - Self-chosen code, or None to have one generated
        @returns pending result, or already_requested / code_taken failure
        """
        if code is not None and not is_valid_custom_code(code.strip()):
            return RegistryResult.failed(
                "invalid_format", "Only letters, numbers, underscores, and hyphens allowed"
            )

        try:
            referrer = await self.registry.get_referrer_by_email(identity.email, for_update=True)
            if referrer is not None and await self.registry.count_codes(referrer.id) > 0:
                return RegistryResult.failed(
                    "already_requested", "You already have a pending or approved referral code"
                )

            if code:
                code = normalize_code(code)
                approved = await self.registry.find_approved_code(code)
                if approved is not None and (referrer is None or approved.referrer_id != referrer.id):
                    return RegistryResult.failed("code_taken", "This code is already taken")
            else:
                code = await generate_unique_code(self.db)

            referrer = await self.registry.ensure_referrer(identity)
            record = ReferralCode(
                code=code,
                referrer_id=referrer.id,
                is_approved=False,
                is_active=True,
                usage_count=0,
                created_at=utcnow(),
            )
            self.db.add(record)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning(f"Concurrent code request for {identity.email} lost the insert race")
            return RegistryResult.failed(
                "already_requested", "You already have a pending or approved referral code"
            )
        except Exception:
            await self.db.rollback()
            raise

        await self.cache.invalidate(identity.email)
        logger.info(f"Referral code {code} requested by {identity.email}")
        return RegistryResult(success=True, status="pending", referrer=referrer, code=record)

    async def check_availability(self, code: str) -> bool:
        """A string is available unless an approved record holds it."""
        return await self.registry.find_approved_code(code) is None

    async def get_status(self, identity: AuthenticatedIdentity) -> Dict[str, Any]:
        cached = await self.cache.get("code-status", identity.email)
        if cached is not None:
            return cached

        payload: Dict[str, Any] = {"status": "none"}
        referrer = await self.registry.get_referrer_by_email(identity.email)
        if referrer is not None:
            codes = await self.registry.get_codes_for_referrer(referrer.id)
            approved = [c for c in codes if c.is_approved]
            if approved:
                record = approved[-1]
                payload = {
                    "status": "approved",
                    "code": record.code,
                    "requestedAt": _iso(record.created_at),
                    "approvedAt": _iso(record.approved_at),
                }
            elif codes:
                record = codes[-1]
                payload = {
                    "status": "pending",
                    "code": record.code,
                    "requestedAt": _iso(record.created_at),
                }

        await self.cache.set("code-status", identity.email, payload)
        return payload

    # ------------------------------------------------------------------
    # Admin workflow
    # ------------------------------------------------------------------

    async def _get_code(self, code_id: int, for_update: bool = False) -> Optional[ReferralCode]:
        stmt = select(ReferralCode).where(ReferralCode.id == code_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_conflict(self, record: ReferralCode) -> Optional[ReferralCode]:
        stmt = (
            select(ReferralCode)
            .where(
                ReferralCode.code == record.code,
                ReferralCode.is_approved.is_(True),
                ReferralCode.referrer_id != record.referrer_id,
            )
            .with_for_update()
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    def _conflict_result(self, code_id: int, code: str, conflicting_id: Optional[int]) -> RegistryResult:
        return RegistryResult.failed(
            "code_taken",
            f"Code {code} is already approved for another referrer",
            conflict={
                "code": code,
                "requestId": code_id,
                "approvedCodeId": conflicting_id,
                "options": CONFLICT_OPTIONS,
            },
        )

    async def _commit_approval(self, record: ReferralCode) -> RegistryResult:
        """Approve ``record`` and its owner in the current transaction, then commit."""
        code_id = record.id
        code = record.code

        conflict = await self._find_conflict(record)
        if conflict is not None:
            conflicting_id = conflict.id
            await self.db.rollback()
            logger.warning(f"Approval of code request {code_id} aborted: {code} already approved")
            return self._conflict_result(code_id, code, conflicting_id)

        referrer = await self.registry.get_referrer(record.referrer_id, for_update=True)

        now = utcnow()
        record.is_approved = True
        record.approved_at = now
        if referrer is not None and not referrer.is_approved:
            referrer.is_approved = True
            referrer.approved_at = now
            referrer.updated_at = now

        try:
            await self.db.commit()
        except IntegrityError:
            # A racing approval committed the same string first
            await self.db.rollback()
            logger.warning(f"Approval of code request {code_id} lost a race for {code}")
            return self._conflict_result(code_id, code, None)
        except Exception:
            await self.db.rollback()
            raise

        if referrer is not None:
            await self.cache.invalidate(referrer.email)
        logger.info(f"Approved referral code {code} (request {code_id})")
        return RegistryResult(success=True, status="approved", referrer=referrer, code=record)

    async def approve_code(self, code_id: int) -> RegistryResult:
        """
        Approve a pending code request.

        Idempotent for already approved records. Aborts with ``code_taken``
        and a conflict description when another owner holds the string; the
        admin then picks ``reject`` or ``reassign`` for this request.

        @param code_id - Code request identifier
        @returns RegistryResult
        """
        record = await self._get_code(code_id, for_update=True)
        if record is None:
            return RegistryResult.failed("not_found", "Code request not found")
        if record.is_approved:
            return RegistryResult(success=True, status="already_approved", code=record,
                                  message="Code is already approved")
        return await self._commit_approval(record)

    async def reassign_code(self, code_id: int) -> RegistryResult:
        """Resolve an approval conflict by approving the request under a fresh generated code."""
        record = await self._get_code(code_id, for_update=True)
        if record is None:
            return RegistryResult.failed("not_found", "Code request not found")
        if record.is_approved:
            return RegistryResult(success=True, status="already_approved", code=record,
                                  message="Code is already approved")

        previous = record.code
        record.code = await generate_unique_code(self.db)
        logger.info(f"Reassigning code request {code_id} from {previous} to {record.code}")
        return await self._commit_approval(record)

    async def reject_code(self, code_id: int) -> RegistryResult:
        """Delete a pending code request, freeing the string immediately."""
        record = await self._get_code(code_id, for_update=True)
        if record is None:
            return RegistryResult.failed("not_found", "Code request not found")
        if record.is_approved:
            return RegistryResult.failed("not_pending", "Approved codes cannot be rejected")

        referrer_id = record.referrer_id
        try:
            await self.db.execute(delete(ReferralCode).where(ReferralCode.id == code_id))
            referrer = await self.registry.get_referrer(referrer_id)
            email = referrer.email if referrer else None
            if referrer is not None and not referrer.is_approved:
                remaining = await self.registry.count_codes(referrer_id)
                if remaining == 0:
                    await self.db.execute(delete(Referrer).where(Referrer.id == referrer_id))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        if email:
            await self.cache.invalidate(email)
        logger.info(f"Rejected code request {code_id}")
        return RegistryResult(success=True, status="rejected")

    async def list_code_requests(self) -> Dict[str, List[Dict[str, Any]]]:
        """Pending requests and approved codes, with owner emails and usage counts."""
        stmt = (
            select(ReferralCode, Referrer.email)
            .join(Referrer, Referrer.id == ReferralCode.referrer_id)
            .order_by(ReferralCode.created_at.desc(), ReferralCode.id.desc())
        )
        result = await self.db.execute(stmt)
        rows = result.all()

        approved_strings = {code.code for code, _ in rows if code.is_approved}
        request_counts_result = await self.db.execute(
            select(ReferralCode.code, func.count(ReferralCode.id))
            .where(ReferralCode.is_approved.is_(False))
            .group_by(ReferralCode.code)
        )
        request_counts = {code: count for code, count in request_counts_result.all()}

        pending = [
            {
                "codeId": code.id,
                "code": code.code,
                "ownerEmail": email,
                "requestedAt": _iso(code.created_at),
                "conflictsWithApproved": code.code in approved_strings,
                "competingRequests": request_counts.get(code.code, 1) - 1,
            }
            for code, email in rows if not code.is_approved
        ]
        approved = [
            {
                "codeId": code.id,
                "code": code.code,
                "ownerEmail": email,
                "approvedAt": _iso(code.approved_at),
                "isActive": code.is_active,
                "usageCount": code.usage_count,
            }
            for code, email in rows if code.is_approved
        ]
        return {"pending": pending, "approved": approved}
