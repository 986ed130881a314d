"""Pydantic schemas for issuance and scan endpoints."""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field


class IssuedTokenResponse(BaseModel):
    payload: str
    envelope: dict[str, Any]
    qr_id: str
    version: int
    expires_at: datetime
    refresh_at: datetime
    reissued: bool = True
    image_data_url: Optional[str] = None


class ScanRequest(BaseModel):
    payload: str = Field(..., max_length=8192)
    scan_type: Literal["entry", "exit"] = "entry"
    scanned_by: str = Field(..., min_length=1, max_length=64)
    location: Optional[str] = Field(default=None, max_length=255)


class ScanDecisionResponse(BaseModel):
    granted: bool
    outcome: str
    code: str
    reason: str
    scan_type: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    role: Optional[str] = None
    profile_pic_url: Optional[str] = None
    subscription_end: Optional[datetime] = None
    qr_id: Optional[str] = None
    qr_version: Optional[int] = None
    log_id: Optional[str] = None
    duplicate: bool = False
