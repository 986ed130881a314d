"""Issuance service: holder-side token lifecycle against the member store."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from shelfpass.common.exceptions import MemberNotFoundError
from shelfpass.members.models import MemberModel
from shelfpass.members.service import MemberService, as_utc, snapshot_of
from shelfpass.tokens.issuer import TokenIssuer, ensure_eligible

logger = logging.getLogger(__name__)


@dataclass
class CurrentToken:
    """The token a holder should be displaying right now."""

    payload: str
    qr_id: str
    version: int
    expires_at: datetime
    refresh_at: datetime
    reissued: bool


class IssuanceService:
    """Eligibility check, issuance and persistence of the latest token."""

    def __init__(self, issuer: TokenIssuer, members: MemberService):
        self.issuer = issuer
        self.members = members

    async def issue(
        self, session: AsyncSession, member_id: str, now: datetime | None = None,
    ) -> CurrentToken:
        """Issue a fresh token. Raises MemberNotFoundError / IneligibleError."""
        now = now or datetime.now(timezone.utc)
        member = await self._require(session, member_id)
        ensure_eligible(member, now)
        return await self._issue_for(session, member, now)

    async def current_or_issue(
        self, session: AsyncSession, member_id: str, now: datetime | None = None,
    ) -> CurrentToken:
        """Return the stored token unless it is due for refresh."""
        now = now or datetime.now(timezone.utc)
        member = await self._require(session, member_id)
        ensure_eligible(member, now)

        expires_at = as_utc(member.qr_expires_at)
        if member.qr_payload and not self.issuer.needs_refresh(expires_at, now):
            return CurrentToken(
                payload=member.qr_payload,
                qr_id=member.qr_id,
                version=member.qr_version,
                expires_at=expires_at,
                refresh_at=self.issuer.refresh_at(expires_at),
                reissued=False,
            )
        return await self._issue_for(session, member, now)

    async def revoke(self, session: AsyncSession, member_id: str) -> None:
        """Forget the displayed token (e.g. on account suspension)."""
        await self.members.clear_issuance(session, member_id)
        logger.info("Stored QR token cleared", extra={"user_id": member_id})

    # ── Internal helpers ──

    async def _require(self, session: AsyncSession, member_id: str) -> MemberModel:
        member = await self.members.get_member(session, member_id)
        if member is None:
            raise MemberNotFoundError()
        return member

    async def _issue_for(
        self, session: AsyncSession, member: MemberModel, now: datetime,
    ) -> CurrentToken:
        token = self.issuer.issue(snapshot_of(member), last_version=member.qr_version, now=now)
        await self.members.record_issuance(session, member, token)
        logger.info(
            "QR token issued",
            extra={"qr_id": token.claim.qr_id, "user_id": member.id},
        )
        return CurrentToken(
            payload=token.payload,
            qr_id=token.claim.qr_id,
            version=token.claim.version,
            expires_at=token.expires_at,
            refresh_at=token.refresh_at,
            reissued=True,
        )
