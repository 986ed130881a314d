"""Member store: the live user record the scanner checks against."""

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shelfpass.common.exceptions import MemberNotFoundError
from shelfpass.members.models import MEMBER_STATUSES, SUBSCRIPTION_STATUSES, MemberModel
from shelfpass.tokens.issuer import IssuedToken, MemberSnapshot

logger = logging.getLogger(__name__)


def as_utc(dt: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything here is UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def snapshot_of(member: MemberModel) -> MemberSnapshot:
    end = as_utc(member.subscription_end)
    return MemberSnapshot(
        user_id=member.id,
        full_name=member.name,
        email=member.email,
        subscription_valid_until=end.date().isoformat() if end else "",
        role=member.role,
        institution_id=member.institution_id,
        profile_pic_url=member.profile_pic_url,
    )


class MemberService:
    """Reads and thin writes on member records."""

    # ── Write ──

    async def create_member(
        self,
        session: AsyncSession,
        name: str,
        email: str,
        role: str = "student",
        status: str = "pending",
        subscription_status: str = "none",
        subscription_end: datetime | None = None,
        **kwargs: Any,
    ) -> MemberModel:
        self._check_status(status)
        self._check_subscription_status(subscription_status)
        member = MemberModel(
            name=name,
            email=email,
            role=role,
            status=status,
            subscription_status=subscription_status,
            subscription_end=subscription_end,
            institution_id=kwargs.get("institution_id"),
            profile_pic_url=kwargs.get("profile_pic_url"),
        )
        session.add(member)
        await session.flush()
        return member

    async def set_status(
        self, session: AsyncSession, member_id: str, status: str,
    ) -> MemberModel:
        self._check_status(status)
        member = await self._require(session, member_id)
        member.status = status
        await session.flush()
        return member

    async def set_subscription(
        self,
        session: AsyncSession,
        member_id: str,
        subscription_status: str,
        subscription_end: datetime | None = None,
    ) -> MemberModel:
        self._check_subscription_status(subscription_status)
        member = await self._require(session, member_id)
        member.subscription_status = subscription_status
        member.subscription_end = subscription_end
        await session.flush()
        return member

    async def mark_subscription_expired(
        self, session: AsyncSession, member_id: str,
    ) -> None:
        """Flip a stale 'active' subscription to 'expired'."""
        await session.execute(
            update(MemberModel)
            .where(MemberModel.id == member_id)
            .where(MemberModel.subscription_status == "active")
            .values(subscription_status="expired", updated_at=datetime.now(timezone.utc))
        )
        logger.info("Subscription marked expired for member %s", member_id)

    async def record_issuance(
        self, session: AsyncSession, member: MemberModel, token: IssuedToken,
    ) -> MemberModel:
        """Store the newest token and advance qr_version.

        Optimistic: only applied if qr_version is still what the token was
        built from. Losing the race leaves the other writer's token in place.
        """
        expected = token.claim.version - 1
        result = await session.execute(
            update(MemberModel)
            .where(MemberModel.id == member.id)
            .where(MemberModel.qr_version == expected)
            .values(
                qr_version=token.claim.version,
                qr_id=token.claim.qr_id,
                qr_payload=token.payload,
                qr_generated_at=token.claim.generated_at_dt,
                qr_expires_at=token.expires_at,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(
                "Concurrent issuance for member %s; version %s not recorded",
                member.id, token.claim.version,
            )
        await session.refresh(member)
        return member

    async def clear_issuance(self, session: AsyncSession, member_id: str) -> MemberModel:
        """Drop the stored token snapshot. qr_version is kept."""
        member = await self._require(session, member_id)
        member.qr_id = None
        member.qr_payload = None
        member.qr_generated_at = None
        member.qr_expires_at = None
        await session.flush()
        return member

    # ── Read ──

    async def get_member(
        self, session: AsyncSession, member_id: str,
    ) -> MemberModel | None:
        result = await session.execute(
            select(MemberModel).where(MemberModel.id == member_id)
        )
        return result.scalar_one_or_none()

    # ── Internal helpers ──

    async def _require(self, session: AsyncSession, member_id: str) -> MemberModel:
        member = await self.get_member(session, member_id)
        if member is None:
            raise MemberNotFoundError()
        return member

    @staticmethod
    def _check_status(status: str) -> None:
        if status not in MEMBER_STATUSES:
            raise ValueError(f"Unknown member status '{status}'")

    @staticmethod
    def _check_subscription_status(status: str) -> None:
        if status not in SUBSCRIPTION_STATUSES:
            raise ValueError(f"Unknown subscription status '{status}'")
