"""Tests for tokens.validator: scan-time decisions against live member state."""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from shelfpass.members.service import MemberService
from shelfpass.scans.models import ScanLogModel
from shelfpass.scans.service import ScanRecorder
from shelfpass.tokens.issuer import MemberSnapshot, TokenIssuer
from shelfpass.tokens.keys import KeyMaterial
from shelfpass.tokens.service import IssuanceService
from shelfpass.tokens.validator import ScanDecision, TokenValidator


QR_KEY = "LibraryQRSecureKey2024!@#$%^&*"
KEYS = KeyMaterial.from_passphrase(QR_KEY)
NOW = datetime(2025, 1, 1, 9, 30, tzinfo=timezone.utc)
END_OF_DAY = datetime(2025, 1, 1, 23, 59, 59, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def members():
    return MemberService()


@pytest.fixture
def recorder():
    return ScanRecorder()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def validator(members, recorder, clock):
    return TokenValidator(KEYS, members, recorder, clock=clock)


@pytest.fixture
def issuance(members):
    return IssuanceService(TokenIssuer(KEYS), members)


async def _member(db, members, **overrides) -> str:
    fields = dict(
        name="Ada Lovelace",
        email="ada@example.com",
        status="verified",
        subscription_status="active",
        subscription_end=END_OF_DAY,
    )
    fields.update(overrides)
    async with db.get_session() as session:
        member = await members.create_member(session, **fields)
        return member.id


async def _issue(db, issuance, member_id, now=NOW) -> str:
    async with db.get_session() as session:
        token = await issuance.issue(session, member_id, now=now)
        return token.payload


async def _scan(db, validator, payload, now=NOW, scan_type="entry", scanned_by="admin-1"):
    async with db.get_session() as session:
        return await validator.validate(
            session, payload, scan_type=scan_type, scanned_by=scanned_by, now=now,
        )


async def _log_count(db) -> int:
    async with db.get_session() as session:
        result = await session.execute(select(func.count()).select_from(ScanLogModel))
        return result.scalar_one()


async def _logs(db) -> list[ScanLogModel]:
    async with db.get_session() as session:
        result = await session.execute(select(ScanLogModel))
        return list(result.scalars().all())


def _tamper(payload: str, field: str, index: int = 10) -> str:
    obj = json.loads(payload)
    value = obj[field]
    replacement = "B" if value[index] != "B" else "C"
    obj[field] = value[:index] + replacement + value[index + 1:]
    return json.dumps(obj)


class TestScenarios:
    async def test_issue_and_scan_same_day_granted(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)

        decision = await _scan(db, validator, payload, now=NOW + timedelta(minutes=1))

        assert decision.granted is True
        assert decision.reason == "granted"
        assert decision.user_id == member_id
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].outcome == "granted"
        assert logs[0].scan_type == "entry"
        assert logs[0].user_id == member_id
        assert logs[0].id == decision.log_id

    async def test_scan_after_expiry_denied(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)

        decision = await _scan(db, validator, payload, now=NOW + timedelta(minutes=21))

        assert decision.granted is False
        assert decision.reason == "expired token"
        assert decision.code == "EXPIRED_TOKEN"
        logs = await _logs(db)
        assert logs[0].denial_reason == "expired token"
        assert logs[0].user_id == member_id

    async def test_corrupted_data_denied_without_decrypting(
        self, db, members, validator, issuance,
    ):
        member_id = await _member(db, members)
        payload = _tamper(await _issue(db, issuance, member_id), "data")

        with patch("shelfpass.tokens.codec.decrypt_claim") as decrypt:
            decision = await _scan(db, validator, payload)
        decrypt.assert_not_called()

        assert decision.granted is False
        assert decision.reason == "integrity check failed"
        assert decision.user_id is None
        assert await _log_count(db) == 1

    async def test_live_subscription_expired_after_issuance(
        self, db, members, validator, issuance,
    ):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        async with db.get_session() as session:
            await members.set_subscription(session, member_id, "expired", END_OF_DAY)

        decision = await _scan(db, validator, payload, now=NOW + timedelta(minutes=1))

        assert decision.granted is False
        assert decision.reason == "subscription expired"

    async def test_foreign_schema_json_denied(self, db, validator):
        decision = await _scan(db, validator, '{"foo":"bar"}')
        assert decision.granted is False
        assert decision.reason == "invalid format"
        assert decision.code == "INVALID_FORMAT"
        assert await _log_count(db) == 1

    async def test_deeply_nested_payload_denied(self, db, validator):
        decision = await _scan(db, validator, "[" * 5000)
        assert decision.granted is False
        assert decision.reason == "invalid format"
        logs = await _logs(db)
        assert len(logs) == 1
        assert logs[0].outcome == "denied"


class TestLiveStateAuthority:
    async def test_renewed_subscription_admits_stale_claim(self, db, members, validator):
        """Claim says expired, live record was renewed: admit."""
        member_id = await _member(db, members, subscription_end=NOW + timedelta(days=365))
        token = TokenIssuer(KEYS).issue(MemberSnapshot(
            user_id=member_id,
            full_name="Ada Lovelace",
            email="ada@example.com",
            subscription_valid_until="2024-06-30",
        ), now=NOW)

        decision = await _scan(db, validator, token.payload)
        assert decision.granted is True

    async def test_end_date_passed_while_status_active(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        async with db.get_session() as session:
            await members.set_subscription(
                session, member_id, "active", NOW + timedelta(minutes=5),
            )

        decision = await _scan(db, validator, payload, now=NOW + timedelta(minutes=10))

        assert decision.granted is False
        assert decision.reason == "subscription expired"
        async with db.get_session() as session:
            member = await members.get_member(session, member_id)
            assert member.subscription_status == "expired"

    async def test_account_not_verified(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        async with db.get_session() as session:
            await members.set_status(session, member_id, "suspended")

        decision = await _scan(db, validator, payload)
        assert decision.granted is False
        assert decision.reason == "account not verified"

    async def test_user_not_found(self, db, validator):
        token = TokenIssuer(KEYS).issue(MemberSnapshot(
            user_id="ghost", full_name="Nobody", email="ghost@example.com",
        ), now=NOW)

        decision = await _scan(db, validator, token.payload)
        assert decision.granted is False
        assert decision.reason == "user not found"
        logs = await _logs(db)
        assert logs[0].user_id == "ghost"

    async def test_grant_shows_live_display_fields(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        async with db.get_session() as session:
            member = await members.get_member(session, member_id)
            member.name = "Augusta Ada King"

        decision = await _scan(db, validator, payload)
        assert decision.granted is True
        assert decision.user_name == "Augusta Ada King"


class TestExpiryMonotonicity:
    async def test_valid_until_boundary_then_never_again(
        self, db, members, validator, issuance, clock,
    ):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        expires = NOW + timedelta(minutes=20)

        results = []
        for at in (
            NOW,
            expires,
            expires + timedelta(milliseconds=1),
            expires + timedelta(hours=1),
            expires + timedelta(days=30),
        ):
            results.append((await _scan(db, validator, payload, now=at)).granted)
            clock.advance(10)

        assert results == [True, True, False, False, False]


class TestDeduplication:
    async def test_repeat_within_window_logged_once(self, db, validator, clock):
        first = await _scan(db, validator, "garbage")
        clock.advance(1.5)
        second = await _scan(db, validator, "garbage")

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.reason == first.reason
        assert second.log_id == first.log_id
        assert await _log_count(db) == 1

    async def test_repeat_after_window_logged_again(self, db, validator, clock):
        await _scan(db, validator, "garbage")
        clock.advance(2.5)
        second = await _scan(db, validator, "garbage")

        assert second.duplicate is False
        assert await _log_count(db) == 2

    async def test_repeated_expired_token_logged_once(
        self, db, members, validator, issuance, clock,
    ):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)
        late = NOW + timedelta(hours=1)

        await _scan(db, validator, payload, now=late)
        clock.advance(0.5)
        again = await _scan(db, validator, payload, now=late)

        assert again.reason == "expired token"
        assert await _log_count(db) == 1

    async def test_different_scanner_not_deduplicated(self, db, validator):
        await _scan(db, validator, "garbage", scanned_by="admin-1")
        await _scan(db, validator, "garbage", scanned_by="admin-2")
        assert await _log_count(db) == 2

    async def test_different_scan_type_not_deduplicated(self, db, validator):
        await _scan(db, validator, "garbage", scan_type="entry")
        await _scan(db, validator, "garbage", scan_type="exit")
        assert await _log_count(db) == 2

    async def test_concurrent_identical_scans_share_decision(self, db, validator):
        async with db.get_session() as session:
            a, b = await asyncio.gather(
                validator.validate(session, "garbage", "entry", "admin-1", now=NOW),
                validator.validate(session, "garbage", "entry", "admin-1", now=NOW),
            )
        assert a.log_id == b.log_id
        assert sorted([a.duplicate, b.duplicate]) == [False, True]
        assert await _log_count(db) == 1


class TestServiceUnavailable:
    async def test_lookup_timeout(self, db, recorder, clock):
        async def slow_lookup(session, member_id):
            await asyncio.sleep(1)

        members = MagicMock()
        members.get_member = slow_lookup
        validator = TokenValidator(KEYS, members, recorder, lookup_timeout=0.05, clock=clock)
        token = TokenIssuer(KEYS).issue(MemberSnapshot(
            user_id="user-1", full_name="Ada", email="ada@example.com",
        ), now=NOW)

        decision = await _scan(db, validator, token.payload)

        assert decision.granted is False
        assert decision.reason == "service unavailable"
        assert decision.code == "SERVICE_UNAVAILABLE"
        logs = await _logs(db)
        assert logs[0].user_id == "user-1"

    async def test_lookup_database_error(self, db, recorder, clock):
        members = MagicMock()
        members.get_member = AsyncMock(side_effect=SQLAlchemyError("connection lost"))
        validator = TokenValidator(KEYS, members, recorder, clock=clock)
        token = TokenIssuer(KEYS).issue(MemberSnapshot(
            user_id="user-1", full_name="Ada", email="ada@example.com",
        ), now=NOW)

        decision = await _scan(db, validator, token.payload)
        assert decision.reason == "service unavailable"

    async def test_log_write_failure_propagates(self, db, members, clock):
        recorder = MagicMock()
        recorder.record = AsyncMock(side_effect=SQLAlchemyError("disk full"))
        validator = TokenValidator(KEYS, members, recorder, clock=clock)

        with pytest.raises(SQLAlchemyError):
            await _scan(db, validator, "garbage")

        # The failed attempt is not cached as a decision.
        recorder.record = AsyncMock(return_value=MagicMock(id="log-1"))
        decision = await _scan(db, validator, "garbage")
        assert decision.duplicate is False
        assert decision.log_id == "log-1"


class TestVersionEnforcement:
    async def test_older_version_admitted_by_default(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        old = await _issue(db, issuance, member_id)
        await _issue(db, issuance, member_id, now=NOW + timedelta(minutes=1))

        decision = await _scan(db, validator, old, now=NOW + timedelta(minutes=2))
        assert decision.granted is True

    async def test_older_version_denied_when_enforced(
        self, db, members, recorder, issuance, clock,
    ):
        validator = TokenValidator(
            KEYS, members, recorder, enforce_latest_version=True, clock=clock,
        )
        member_id = await _member(db, members)
        old = await _issue(db, issuance, member_id)
        new = await _issue(db, issuance, member_id, now=NOW + timedelta(minutes=1))

        denied = await _scan(db, validator, old, now=NOW + timedelta(minutes=2))
        granted = await _scan(db, validator, new, now=NOW + timedelta(minutes=2))

        assert denied.reason == "superseded token"
        assert granted.granted is True
        assert granted.qr_version == 2


class TestScanInputs:
    async def test_unknown_scan_type_rejected(self, db, validator):
        with pytest.raises(ValueError):
            await _scan(db, validator, "garbage", scan_type="sideways")

    async def test_exit_scan_recorded(self, db, members, validator, issuance):
        member_id = await _member(db, members)
        payload = await _issue(db, issuance, member_id)

        decision = await _scan(db, validator, payload, scan_type="exit")
        assert decision.granted is True
        assert decision.scan_type == "exit"
        logs = await _logs(db)
        assert logs[0].scan_type == "exit"

    async def test_default_location(self, db, validator):
        await _scan(db, validator, "garbage")
        logs = await _logs(db)
        assert logs[0].location == "main_entrance"

    async def test_outcome_property(self):
        assert ScanDecision(granted=True, code="GRANTED", reason="granted", scan_type="entry").outcome == "granted"
        assert ScanDecision(granted=False, code="X", reason="x", scan_type="entry").outcome == "denied"
