"""Scan recorder: append and query the scan audit log.

Entries are never updated or deleted. A mistaken entry is corrected by
appending a compensating entry whose ``corrects_id`` points at it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shelfpass.common.exceptions import ShelfpassError
from shelfpass.scans.models import OUTCOMES, SCAN_TYPES, ScanLogModel

PAYLOAD_EXCERPT_LEN = 100


@dataclass
class ScanEntry:
    """A decision to be appended to the log."""

    scan_type: str
    scanned_by: str
    outcome: str
    location: str = "main_entrance"
    user_id: Optional[str] = None
    reason_code: Optional[str] = None
    denial_reason: Optional[str] = None
    qr_id: Optional[str] = None
    qr_version: Optional[int] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    payload: Optional[str] = None
    scan_time: Optional[datetime] = None
    corrects_id: Optional[str] = None


def _utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class ScanLogNotFoundError(ShelfpassError):
    def __init__(self, message: str = "Scan log entry not found"):
        super().__init__(message, code="NOT_FOUND")


class ScanRecorder:
    """Append-only writer and reader for scan logs."""

    # ── Write ──

    async def record(self, session: AsyncSession, entry: ScanEntry) -> ScanLogModel:
        if entry.scan_type not in SCAN_TYPES:
            raise ValueError(f"Unknown scan type '{entry.scan_type}'")
        if entry.outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome '{entry.outcome}'")

        log = ScanLogModel(
            user_id=entry.user_id,
            scan_type=entry.scan_type,
            scan_time=entry.scan_time or datetime.now(timezone.utc),
            location=entry.location,
            scanned_by=entry.scanned_by,
            outcome=entry.outcome,
            reason_code=entry.reason_code,
            denial_reason=entry.denial_reason,
            qr_id=entry.qr_id,
            qr_version=entry.qr_version,
            user_name=entry.user_name,
            user_email=entry.user_email,
            payload_excerpt=entry.payload[:PAYLOAD_EXCERPT_LEN] if entry.payload else None,
            corrects_id=entry.corrects_id,
        )
        session.add(log)
        await session.flush()
        return log

    async def record_correction(
        self,
        session: AsyncSession,
        original_id: str,
        scanned_by: str,
        outcome: str | None = None,
        scan_type: str | None = None,
        note: str = "",
    ) -> ScanLogModel:
        """Append a compensating entry for ``original_id``.

        Unspecified fields are carried over from the original.
        """
        original = await self.get(session, original_id)
        if original is None:
            raise ScanLogNotFoundError()

        log = await self.record(session, ScanEntry(
            scan_type=scan_type or original.scan_type,
            scanned_by=scanned_by,
            outcome=outcome or original.outcome,
            location=original.location,
            user_id=original.user_id,
            reason_code="CORRECTION",
            denial_reason=note or None,
            qr_id=original.qr_id,
            qr_version=original.qr_version,
            user_name=original.user_name,
            user_email=original.user_email,
            corrects_id=original.id,
        ))
        return log

    # ── Read ──

    async def get(self, session: AsyncSession, log_id: str) -> ScanLogModel | None:
        result = await session.execute(
            select(ScanLogModel).where(ScanLogModel.id == log_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ScanLogModel]:
        """History for one member, newest first."""
        result = await session.execute(
            select(ScanLogModel)
            .where(ScanLogModel.user_id == user_id)
            .order_by(ScanLogModel.scan_time.desc(), ScanLogModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_between(
        self,
        session: AsyncSession,
        start: datetime | None = None,
        end: datetime | None = None,
        outcome: str | None = None,
        scan_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ScanLogModel]:
        """Scans in [start, end), newest first."""
        query = select(ScanLogModel)
        if start is not None:
            query = query.where(ScanLogModel.scan_time >= _utc(start))
        if end is not None:
            query = query.where(ScanLogModel.scan_time < _utc(end))
        if outcome:
            query = query.where(ScanLogModel.outcome == outcome)
        if scan_type:
            query = query.where(ScanLogModel.scan_type == scan_type)
        query = (
            query.order_by(ScanLogModel.scan_time.desc(), ScanLogModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())

    async def get_stats(
        self, session: AsyncSession, now: datetime | None = None,
    ) -> dict[str, int]:
        """Totals for the admin dashboard. 'today' is the current UTC day."""
        now = _utc(now) if now else datetime.now(timezone.utc)
        day_start = now.replace(
            hour=0, minute=0, second=0, microsecond=0,
        )

        result = await session.execute(
            select(ScanLogModel.outcome, func.count()).group_by(ScanLogModel.outcome)
        )
        by_outcome = {outcome: count for outcome, count in result.all()}

        today = await session.execute(
            select(func.count())
            .select_from(ScanLogModel)
            .where(ScanLogModel.scan_time >= day_start)
            .where(ScanLogModel.scan_time < day_start + timedelta(days=1))
        )

        granted = by_outcome.get("granted", 0)
        denied = by_outcome.get("denied", 0)
        return {
            "total_scans": granted + denied,
            "granted_scans": granted,
            "denied_scans": denied,
            "today_scans": today.scalar_one(),
        }
