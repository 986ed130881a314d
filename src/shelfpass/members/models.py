"""SQLAlchemy model for the live member record."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from shelfpass.common.models import Base, TimestampMixin, generate_uuid

MEMBER_STATUSES = ("pending", "verified", "rejected", "suspended")
SUBSCRIPTION_STATUSES = ("active", "expired", "cancelled", "none")


class MemberModel(Base, TimestampMixin):
    __tablename__ = "members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), default="student")
    institution_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    profile_pic_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="pending", index=True)
    subscription_status: Mapped[str] = mapped_column(String(20), default="none", index=True)
    subscription_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Latest issued token, kept for display continuity on the holder side.
    qr_version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    qr_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    qr_payload: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_generated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    qr_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
