"""FastAPI application factory for Shelfpass."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from shelfpass.common.config import get_settings
from shelfpass.common.schemas import HealthResponse

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        from shelfpass.deps import get_db, get_key_material
        keys = get_key_material()
        logger.info("QR key loaded", extra={"key_fingerprint": keys.fingerprint})
        db = get_db()
        await db.init()
        await db.create_all()
        yield
        # Shutdown
        await db.close()

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        from shelfpass.deps import get_db
        if await get_db().ping():
            return HealthResponse(version=settings.api_version)
        return HealthResponse(status="degraded", version=settings.api_version, database="unavailable")

    # Mount routers
    from shelfpass.tokens.router import router as tokens_router
    from shelfpass.scans.router import router as scans_router

    prefix = settings.api_prefix
    app.include_router(tokens_router, prefix=prefix, tags=["tokens"])
    app.include_router(scans_router, prefix=prefix, tags=["scans"])

    return app
