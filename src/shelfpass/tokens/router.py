"""Issuance and scan API router."""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.exc import SQLAlchemyError

from shelfpass.common.exceptions import (
    IneligibleError,
    MemberNotFoundError,
    ServiceUnavailableError,
)
from shelfpass.common.security import require_api_key
from shelfpass.tokens.render import render_data_url, render_png
from shelfpass.tokens.schemas import IssuedTokenResponse, ScanDecisionResponse, ScanRequest
from shelfpass.tokens.service import CurrentToken
from shelfpass.tokens.validator import ScanDecision

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_issuance():
    from shelfpass.deps import get_issuance_service
    return get_issuance_service()


def _get_validator():
    from shelfpass.deps import get_token_validator
    return get_token_validator()


def _get_db():
    from shelfpass.deps import get_db
    return get_db()


def _render_kwargs() -> dict:
    from shelfpass.common.config import get_settings

    settings = get_settings()
    return {
        "error_correction": settings.qr_error_correction,
        "box_size": settings.qr_box_size,
        "border": settings.qr_border,
    }


def _issued_response(token: CurrentToken, include_image: bool = False) -> IssuedTokenResponse:
    return IssuedTokenResponse(
        payload=token.payload,
        envelope=json.loads(token.payload),
        qr_id=token.qr_id,
        version=token.version,
        expires_at=token.expires_at,
        refresh_at=token.refresh_at,
        reissued=token.reissued,
        image_data_url=render_data_url(token.payload, **_render_kwargs()) if include_image else None,
    )


def _decision_response(decision: ScanDecision) -> ScanDecisionResponse:
    return ScanDecisionResponse(
        granted=decision.granted,
        outcome=decision.outcome,
        code=decision.code,
        reason=decision.reason,
        scan_type=decision.scan_type,
        user_id=decision.user_id,
        user_name=decision.user_name,
        user_email=decision.user_email,
        role=decision.role,
        profile_pic_url=decision.profile_pic_url,
        subscription_end=decision.subscription_end,
        qr_id=decision.qr_id,
        qr_version=decision.qr_version,
        log_id=decision.log_id,
        duplicate=decision.duplicate,
    )


@router.post("/qr/{member_id}", response_model=IssuedTokenResponse)
async def issue_token(
    member_id: str,
    include_image: bool = Query(False),
    _=Depends(require_api_key),
):
    svc = _get_issuance()
    db = _get_db()
    try:
        async with db.get_session() as session:
            token = await svc.issue(session, member_id)
    except MemberNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except IneligibleError as e:
        raise HTTPException(status_code=403, detail=e.message)
    return _issued_response(token, include_image)


@router.get("/qr/{member_id}", response_model=IssuedTokenResponse)
async def current_token(
    member_id: str,
    include_image: bool = Query(False),
    _=Depends(require_api_key),
):
    svc = _get_issuance()
    db = _get_db()
    try:
        async with db.get_session() as session:
            token = await svc.current_or_issue(session, member_id)
    except MemberNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except IneligibleError as e:
        raise HTTPException(status_code=403, detail=e.message)
    return _issued_response(token, include_image)


@router.get("/qr/{member_id}/image.png")
async def current_token_image(member_id: str, _=Depends(require_api_key)):
    svc = _get_issuance()
    db = _get_db()
    try:
        async with db.get_session() as session:
            token = await svc.current_or_issue(session, member_id)
    except MemberNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except IneligibleError as e:
        raise HTTPException(status_code=403, detail=e.message)

    png = render_png(token.payload, **_render_kwargs())
    return Response(
        content=png,
        media_type="image/png",
        headers={"Cache-Control": "no-store", "X-QR-Expires-At": token.expires_at.isoformat()},
    )


@router.delete("/qr/{member_id}", status_code=204)
async def revoke_token(member_id: str, _=Depends(require_api_key)):
    svc = _get_issuance()
    db = _get_db()
    try:
        async with db.get_session() as session:
            await svc.revoke(session, member_id)
    except MemberNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return Response(status_code=204)


@router.post("/scan", response_model=ScanDecisionResponse)
async def scan(body: ScanRequest, _=Depends(require_api_key)):
    """Validate a scanned payload. Always answers with a decision."""
    validator = _get_validator()
    db = _get_db()
    try:
        async with db.get_session() as session:
            decision = await validator.validate(
                session,
                body.payload,
                scan_type=body.scan_type,
                scanned_by=body.scanned_by,
                location=body.location,
            )
    except SQLAlchemyError:
        logger.exception("Scan could not be recorded")
        err = ServiceUnavailableError("Scan log unavailable")
        decision = ScanDecision(
            granted=False, code=err.code, reason=err.reason, scan_type=body.scan_type,
        )
    return _decision_response(decision)
