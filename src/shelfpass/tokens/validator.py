"""
Scan-time validation of QR payloads.

One scan is one pass through a fixed sequence of checks:

    parse -> decode (hash, decrypt, claim) -> expiry -> live lookup
          -> account status -> live subscription [-> latest version] -> grant

The first failing check decides the denial reason. Every decision, granted or
denied, is appended to the scan log exactly once. Identical payloads from the
same scanner inside the de-duplication window reuse the earlier decision and
are not logged again.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from shelfpass.common.exceptions import (
    AccountNotVerifiedError,
    ExpiredTokenError,
    ServiceUnavailableError,
    ShelfpassError,
    SubscriptionExpiredError,
    SupersededTokenError,
    UserNotFoundError,
)
from shelfpass.members.service import MemberService, as_utc
from shelfpass.scans.models import SCAN_TYPES
from shelfpass.scans.service import ScanEntry, ScanRecorder
from shelfpass.tokens.codec import UserClaim, decode_envelope, parse_payload
from shelfpass.tokens.keys import KeyMaterial

logger = logging.getLogger(__name__)

GRANTED = "granted"
DENIED = "denied"


@dataclass(frozen=True)
class ScanDecision:
    """Outcome of one scan, as shown to the admin."""

    granted: bool
    code: str
    reason: str
    scan_type: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    role: Optional[str] = None
    profile_pic_url: Optional[str] = None
    subscription_end: Optional[datetime] = None
    qr_id: Optional[str] = None
    qr_version: Optional[int] = None
    log_id: Optional[str] = None
    duplicate: bool = False

    @property
    def outcome(self) -> str:
        return GRANTED if self.granted else DENIED


class _Checked:
    """Facts gathered while walking the checks, for logging a denial."""

    __slots__ = ("claim",)

    def __init__(self) -> None:
        self.claim: UserClaim | None = None


class TokenValidator:
    """Admit/deny decisions for scanned payloads."""

    def __init__(
        self,
        keys: KeyMaterial,
        members: MemberService,
        recorder: ScanRecorder,
        lookup_timeout: float = 5.0,
        dedup_window: float = 2.0,
        enforce_latest_version: bool = False,
        default_location: str = "main_entrance",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.keys = keys
        self.members = members
        self.recorder = recorder
        self.lookup_timeout = lookup_timeout
        self.dedup_window = dedup_window
        self.enforce_latest_version = enforce_latest_version
        self.default_location = default_location
        self._clock = clock
        self._recent: dict[tuple[str, str, str], tuple[float, asyncio.Future]] = {}

    async def validate(
        self,
        session: AsyncSession,
        raw: str,
        scan_type: str,
        scanned_by: str,
        location: str | None = None,
        now: datetime | None = None,
    ) -> ScanDecision:
        """Decide on one scanned payload and log the decision.

        Token, member and subscription problems never raise; they come back
        as a denied ScanDecision. Failures writing the scan log propagate.
        """
        if scan_type not in SCAN_TYPES:
            raise ValueError(f"Unknown scan type '{scan_type}'")

        key = (raw if isinstance(raw, str) else repr(raw), scan_type, scanned_by)
        started = self._clock()
        self._prune(started)

        recent = self._recent.get(key)
        if recent is not None:
            earlier = await asyncio.shield(recent[1])
            logger.info(
                "Duplicate scan suppressed",
                extra={"qr_id": earlier.qr_id, "outcome": earlier.outcome},
            )
            return replace(earlier, duplicate=True)

        pending = asyncio.get_running_loop().create_future()
        self._recent[key] = (started, pending)
        try:
            decision = await self._decide_and_record(
                session, raw, scan_type, scanned_by,
                location or self.default_location,
                as_utc(now) if now else datetime.now(timezone.utc),
            )
        except Exception as exc:
            self._recent.pop(key, None)
            pending.set_exception(exc)
            pending.exception()
            raise
        pending.set_result(decision)
        return decision

    # ── Internal helpers ──

    async def _decide_and_record(
        self,
        session: AsyncSession,
        raw: str,
        scan_type: str,
        scanned_by: str,
        location: str,
        now: datetime,
    ) -> ScanDecision:
        checked = _Checked()
        try:
            decision = await self._run_checks(session, raw, scan_type, now, checked)
        except ShelfpassError as exc:
            claim = checked.claim
            decision = ScanDecision(
                granted=False,
                code=exc.code,
                reason=exc.reason,
                scan_type=scan_type,
                user_id=claim.user_id if claim else None,
                user_name=claim.full_name if claim else None,
                user_email=claim.email if claim else None,
                role=claim.role if claim else None,
                qr_id=claim.qr_id if claim else None,
                qr_version=claim.version if claim else None,
            )

        log = await self.recorder.record(session, ScanEntry(
            scan_type=scan_type,
            scanned_by=scanned_by,
            outcome=decision.outcome,
            location=location,
            user_id=decision.user_id,
            reason_code=None if decision.granted else decision.code,
            denial_reason=None if decision.granted else decision.reason,
            qr_id=decision.qr_id,
            qr_version=decision.qr_version,
            user_name=decision.user_name,
            user_email=decision.user_email,
            payload=raw if isinstance(raw, str) else None,
            scan_time=now,
        ))

        logger.info(
            "Scan %s: %s", decision.outcome, decision.reason,
            extra={
                "qr_id": decision.qr_id,
                "user_id": decision.user_id,
                "scan_type": scan_type,
                "outcome": decision.outcome,
                "reason_code": decision.code,
            },
        )
        return replace(decision, log_id=log.id)

    async def _run_checks(
        self,
        session: AsyncSession,
        raw: str,
        scan_type: str,
        now: datetime,
        checked: _Checked,
    ) -> ScanDecision:
        envelope = parse_payload(raw)
        claim = decode_envelope(envelope, self.keys)
        checked.claim = claim

        if now > claim.expires_at_dt:
            raise ExpiredTokenError()

        member = await self._lookup(session, claim.user_id)

        if member.status != "verified":
            raise AccountNotVerifiedError()

        # The claim's subscriptionValidUntil is advisory; the live record decides.
        subscription_end = as_utc(member.subscription_end)
        if subscription_end is not None and subscription_end < now:
            if member.subscription_status == "active":
                await self._expire_subscription(session, member.id)
            raise SubscriptionExpiredError()
        if member.subscription_status != "active":
            raise SubscriptionExpiredError()

        if self.enforce_latest_version and claim.version < (member.qr_version or 0):
            raise SupersededTokenError()

        return ScanDecision(
            granted=True,
            code="GRANTED",
            reason=GRANTED,
            scan_type=scan_type,
            user_id=member.id,
            user_name=member.name,
            user_email=member.email,
            role=member.role,
            profile_pic_url=claim.profile_pic_url or member.profile_pic_url,
            subscription_end=subscription_end,
            qr_id=claim.qr_id,
            qr_version=claim.version,
        )

    async def _lookup(self, session: AsyncSession, user_id: str) -> Any:
        try:
            member = await asyncio.wait_for(
                self.members.get_member(session, user_id),
                timeout=self.lookup_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ServiceUnavailableError("Member lookup timed out") from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Member lookup failed: %s", exc)
            raise ServiceUnavailableError("Member lookup failed") from exc
        if member is None:
            raise UserNotFoundError()
        return member

    async def _expire_subscription(self, session: AsyncSession, member_id: str) -> None:
        try:
            await self.members.mark_subscription_expired(session, member_id)
        except SQLAlchemyError:
            logger.exception("Failed to mark subscription expired for %s", member_id)

    def _prune(self, now: float) -> None:
        stale = [
            key for key, (at, pending) in self._recent.items()
            if now - at > self.dedup_window and pending.done()
        ]
        for key in stale:
            del self._recent[key]
