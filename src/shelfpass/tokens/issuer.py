"""
Token issuance: stamp a member snapshot and encode it.

Issuance does not check eligibility. Callers run ``ensure_eligible`` on the
live member record first; skipping it produces codes that every scanner will
deny at the live subscription check.
"""

import os
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from shelfpass.common.exceptions import IneligibleError
from shelfpass.tokens.codec import TokenEnvelope, UserClaim, encode_claim, format_timestamp
from shelfpass.tokens.keys import KeyMaterial

BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"
QR_ID_SUFFIX_LEN = 9

DEFAULT_WINDOW = timedelta(minutes=20)
DEFAULT_REFRESH_MARGIN = timedelta(minutes=2)


@dataclass
class MemberSnapshot:
    """Profile fields copied into the claim at issuance time."""

    user_id: str
    full_name: str
    email: str
    subscription_valid_until: str = ""
    role: str = "student"
    institution_id: Optional[str] = None
    profile_pic_url: Optional[str] = None


@dataclass
class IssuedToken:
    envelope: TokenEnvelope
    claim: UserClaim
    refresh_at: datetime

    @property
    def payload(self) -> str:
        return self.envelope.to_payload()

    @property
    def expires_at(self) -> datetime:
        return self.claim.expires_at_dt


def generate_qr_id(now: datetime | None = None) -> str:
    """qr_<epoch-ms>_<9 random base36 chars>."""
    if now is None:
        millis = int(time.time() * 1000)
    else:
        millis = int(now.timestamp() * 1000)
    suffix = "".join(BASE36_ALPHABET[b % 36] for b in os.urandom(QR_ID_SUFFIX_LEN))
    return f"qr_{millis}_{suffix}"


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def ensure_eligible(member: Any, now: datetime | None = None) -> None:
    """Contract check run before issuing. Raises IneligibleError.

    ``member`` is any object with ``status``, ``subscription_status`` and
    ``subscription_end`` attributes (the live record).
    """
    now = now or datetime.now(timezone.utc)
    if member.status != "verified":
        raise IneligibleError(
            "Your account is pending verification, cannot generate access code"
        )
    if member.subscription_status != "active":
        raise IneligibleError(
            "Your subscription is not active, cannot generate access code"
        )
    if member.subscription_end is not None and _as_utc(member.subscription_end) < now:
        raise IneligibleError(
            "Your subscription has expired, cannot generate access code"
        )


class TokenIssuer:
    """Builds and encodes fresh claims."""

    def __init__(
        self,
        keys: KeyMaterial,
        window: timedelta = DEFAULT_WINDOW,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
    ):
        if refresh_margin >= window:
            raise ValueError("refresh margin must be shorter than the validity window")
        self.keys = keys
        self.window = window
        self.refresh_margin = refresh_margin

    def issue(
        self,
        snapshot: MemberSnapshot,
        last_version: int = 0,
        now: datetime | None = None,
    ) -> IssuedToken:
        """Stamp, version and encode a claim for ``snapshot``."""
        now = _as_utc(now) if now else datetime.now(timezone.utc)
        # Millisecond precision so the datetime we compute with equals the
        # one written into the claim.
        now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
        expires_at = now + self.window

        claim = UserClaim(
            user_id=snapshot.user_id,
            full_name=snapshot.full_name,
            email=snapshot.email,
            subscription_valid_until=snapshot.subscription_valid_until or "",
            role=snapshot.role,
            institution_id=snapshot.institution_id,
            profile_pic_url=snapshot.profile_pic_url,
            generated_at=format_timestamp(now),
            expires_at=format_timestamp(expires_at),
            qr_id=generate_qr_id(now),
            version=last_version + 1,
        )
        return IssuedToken(
            envelope=encode_claim(claim, self.keys),
            claim=claim,
            refresh_at=expires_at - self.refresh_margin,
        )

    def refresh_at(self, expires_at: datetime) -> datetime:
        return _as_utc(expires_at) - self.refresh_margin

    def needs_refresh(self, expires_at: datetime | None, now: datetime | None = None) -> bool:
        """True once the displayed code is inside the refresh margin (or gone)."""
        if expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        return now >= self.refresh_at(expires_at)
