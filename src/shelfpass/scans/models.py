"""SQLAlchemy model for the append-only scan log."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shelfpass.common.models import Base, CreatedAtMixin, generate_uuid

SCAN_TYPES = ("entry", "exit")
OUTCOMES = ("granted", "denied")


class ScanLogModel(Base, CreatedAtMixin):
    __tablename__ = "scan_logs"
    __table_args__ = (
        Index("ix_scan_logs_user_time", "user_id", "scan_time"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    # Not a foreign key: denied scans may name users that do not exist.
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    scan_type: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    scan_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(255), nullable=False, default="main_entrance")
    scanned_by: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    reason_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    denial_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    qr_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qr_version: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payload_excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)

    corrects_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
