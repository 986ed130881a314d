"""Scan history API router."""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from shelfpass.common.security import require_api_key
from shelfpass.scans.schemas import CorrectionRequest, ScanLogResponse, ScanStatsResponse
from shelfpass.scans.service import ScanLogNotFoundError

router = APIRouter()


def _get_service():
    from shelfpass.deps import get_scan_recorder
    return get_scan_recorder()


def _get_db():
    from shelfpass.deps import get_db
    return get_db()


@router.get("/scans/member/{user_id}", response_model=list[ScanLogResponse])
async def member_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        logs = await svc.list_for_user(session, user_id, limit=limit, offset=offset)
        return [ScanLogResponse.model_validate(log) for log in logs]


@router.get("/scans", response_model=list[ScanLogResponse])
async def list_scans(
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    outcome: Literal["granted", "denied"] | None = Query(None),
    scan_type: Literal["entry", "exit"] | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        logs = await svc.list_between(
            session, start=start, end=end, outcome=outcome,
            scan_type=scan_type, limit=limit, offset=offset,
        )
        return [ScanLogResponse.model_validate(log) for log in logs]


@router.get("/scans/stats", response_model=ScanStatsResponse)
async def scan_stats(_=Depends(require_api_key)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        return ScanStatsResponse(**await svc.get_stats(session))


@router.post("/scans/{log_id}/corrections", response_model=ScanLogResponse, status_code=201)
async def correct_scan(
    log_id: str, body: CorrectionRequest, _=Depends(require_api_key),
):
    svc = _get_service()
    db = _get_db()
    try:
        async with db.get_session() as session:
            log = await svc.record_correction(
                session, log_id,
                scanned_by=body.scanned_by,
                outcome=body.outcome,
                scan_type=body.scan_type,
                note=body.note,
            )
            return ScanLogResponse.model_validate(log)
    except ScanLogNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
