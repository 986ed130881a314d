"""Pydantic schemas for scan log API responses."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class ScanLogResponse(BaseModel):
    id: str
    user_id: Optional[str] = None
    scan_type: str
    scan_time: datetime
    location: str
    scanned_by: str
    outcome: str
    reason_code: Optional[str] = None
    denial_reason: Optional[str] = None
    qr_id: Optional[str] = None
    qr_version: Optional[int] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    corrects_id: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ScanStatsResponse(BaseModel):
    total_scans: int
    granted_scans: int
    denied_scans: int
    today_scans: int


class CorrectionRequest(BaseModel):
    scanned_by: str = Field(..., min_length=1, max_length=64)
    outcome: Optional[Literal["granted", "denied"]] = None
    scan_type: Optional[Literal["entry", "exit"]] = None
    note: str = Field(default="", max_length=255)
