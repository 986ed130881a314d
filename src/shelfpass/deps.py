"""Dependency injection singletons for Shelfpass."""

from datetime import timedelta

from shelfpass.common.config import get_settings
from shelfpass.common.database import DatabaseManager
from shelfpass.members.service import MemberService
from shelfpass.scans.service import ScanRecorder
from shelfpass.tokens.issuer import TokenIssuer
from shelfpass.tokens.keys import KeyMaterial
from shelfpass.tokens.service import IssuanceService
from shelfpass.tokens.validator import TokenValidator

_db: DatabaseManager | None = None
_keys: KeyMaterial | None = None
_members: MemberService | None = None
_recorder: ScanRecorder | None = None
_issuance: IssuanceService | None = None
_validator: TokenValidator | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_key_material() -> KeyMaterial:
    global _keys
    if _keys is None:
        _keys = KeyMaterial.from_passphrase(get_settings().qr_key)
    return _keys


def get_member_service() -> MemberService:
    global _members
    if _members is None:
        _members = MemberService()
    return _members


def get_scan_recorder() -> ScanRecorder:
    global _recorder
    if _recorder is None:
        _recorder = ScanRecorder()
    return _recorder


def get_token_issuer() -> TokenIssuer:
    settings = get_settings()
    return TokenIssuer(
        get_key_material(),
        window=timedelta(minutes=settings.qr_validity_minutes),
        refresh_margin=timedelta(seconds=settings.refresh_margin_seconds),
    )


def get_issuance_service() -> IssuanceService:
    global _issuance
    if _issuance is None:
        _issuance = IssuanceService(get_token_issuer(), get_member_service())
    return _issuance


def get_token_validator() -> TokenValidator:
    global _validator
    if _validator is None:
        settings = get_settings()
        _validator = TokenValidator(
            get_key_material(),
            get_member_service(),
            get_scan_recorder(),
            lookup_timeout=settings.lookup_timeout_seconds,
            dedup_window=settings.dedup_window_seconds,
            enforce_latest_version=settings.enforce_latest_version,
            default_location=settings.default_location,
        )
    return _validator


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _keys, _members, _recorder, _issuance, _validator
    _db = None
    _keys = None
    _members = None
    _recorder = None
    _issuance = None
    _validator = None
