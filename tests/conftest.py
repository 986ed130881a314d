"""Shared test fixtures for Shelfpass."""

import os
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient


QR_KEY = "LibraryQRSecureKey2024!@#$%^&*"
API_KEY = "test-admin-api-key"


@pytest.fixture
def qr_key():
    return QR_KEY


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def keys():
    from shelfpass.tokens.keys import KeyMaterial
    return KeyMaterial.from_passphrase(QR_KEY)


@pytest.fixture
async def db():
    """Standalone in-memory database for service-level tests."""
    from shelfpass.common.config import ShelfpassSettings
    from shelfpass.common.database import DatabaseManager

    manager = DatabaseManager(ShelfpassSettings(
        db_url="sqlite+aiosqlite://", qr_key=QR_KEY, api_key=API_KEY,
    ))
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def app():
    """Create a test app with in-memory DB."""
    os.environ["SHELFPASS_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["SHELFPASS_QR_KEY"] = QR_KEY
    os.environ["SHELFPASS_API_KEY"] = API_KEY

    # Clear caches and singletons so new env vars take effect
    from shelfpass.common.config import get_settings
    get_settings.cache_clear()

    from shelfpass.deps import reset_singletons
    reset_singletons()

    from shelfpass.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from shelfpass.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Shelfpass-Api-Key": API_KEY}


@pytest.fixture
def make_member():
    """Insert a member through the app's database; returns its id."""
    async def _make(
        name="Ada Lovelace",
        email="ada@example.com",
        status="verified",
        subscription_status="active",
        subscription_end=None,
        **kwargs,
    ):
        from shelfpass.deps import get_db, get_member_service

        if subscription_end is None and subscription_status == "active":
            subscription_end = datetime.now(timezone.utc) + timedelta(days=30)
        async with get_db().get_session() as session:
            member = await get_member_service().create_member(
                session, name, email,
                status=status,
                subscription_status=subscription_status,
                subscription_end=subscription_end,
                **kwargs,
            )
            return member.id

    return _make
