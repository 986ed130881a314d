"""
AccessClient SDK: sync client for the Shelfpass API.

Used by holder apps to fetch their current QR token and by admin scanner
devices to submit scanned payloads. Each call is a single attempt; on
failure the operator re-initiates.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from shelfpass.common.exceptions import ServiceUnavailableError


@dataclass
class ClientToken:
    """Token info returned by issue()/current()."""

    success: bool
    payload: str = ""
    qr_id: str = ""
    version: int = 0
    expires_at: Optional[datetime] = None
    refresh_at: Optional[datetime] = None
    code: str = ""
    message: str = ""

    def needs_refresh(self, now: Optional[datetime] = None) -> bool:
        if not self.success or self.refresh_at is None:
            return True
        return (now or datetime.now(timezone.utc)) >= self.refresh_at


@dataclass
class ClientScanResult:
    """Result of scan() call."""

    granted: bool
    code: str = ""
    reason: str = ""
    scan_type: str = "entry"
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    qr_id: Optional[str] = None
    log_id: Optional[str] = None
    duplicate: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


class AccessClient:
    """Synchronous HTTP client for Shelfpass."""

    def __init__(
        self,
        server_url: str = "http://localhost:8080",
        api_key: Optional[str] = None,
        scanner_id: Optional[str] = None,
        timeout: float = 5.0,
    ):
        self.server_url = server_url.rstrip("/")
        self.api_key = api_key
        self.scanner_id = scanner_id
        self._http = httpx.Client(
            base_url=self.server_url,
            timeout=timeout,
        )

    def _headers(self) -> dict[str, str]:
        headers = {}
        if self.api_key:
            headers["X-Shelfpass-Api-Key"] = self.api_key
        return headers

    def _request(
        self,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Single HTTP attempt with structured error handling.

        Returns parsed JSON on success, or a structured error dict for 4xx.
        Transport failures and 5xx raise ServiceUnavailableError.
        """
        try:
            resp = getattr(self._http, method)(path, headers=self._headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise ServiceUnavailableError("Request timed out") from e
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(str(e)) from e

        if resp.status_code >= 500:
            raise ServiceUnavailableError(f"Server error: {resp.status_code}")
        if resp.status_code >= 400:
            try:
                detail = resp.json().get("detail", "")
            except (json.JSONDecodeError, AttributeError):
                detail = ""
            return {
                "error": detail or f"Client error: {resp.status_code}",
                "code": {403: "FORBIDDEN", 404: "NOT_FOUND"}.get(resp.status_code, "CLIENT_ERROR"),
            }
        try:
            return resp.json()
        except json.JSONDecodeError:
            return {"error": "Invalid JSON response", "code": "JSON_ERROR"}

    @staticmethod
    def _parse_time(value: Any) -> Optional[datetime]:
        if not value:
            return None
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt

    def _parse_token(self, data: dict[str, Any]) -> ClientToken:
        if "error" in data:
            return ClientToken(success=False, code=data.get("code", ""), message=data["error"])
        return ClientToken(
            success=True,
            payload=data.get("payload", ""),
            qr_id=data.get("qr_id", ""),
            version=data.get("version", 0),
            expires_at=self._parse_time(data.get("expires_at")),
            refresh_at=self._parse_time(data.get("refresh_at")),
            code="OK",
        )

    # ── Holder ──

    def issue(self, member_id: str) -> ClientToken:
        """Force a fresh token for ``member_id``."""
        return self._parse_token(self._request("post", f"/qr/{member_id}"))

    def current(self, member_id: str) -> ClientToken:
        """Token to display now; the server re-issues when due."""
        return self._parse_token(self._request("get", f"/qr/{member_id}"))

    # ── Scanner ──

    def scan(
        self,
        payload: str,
        scan_type: str = "entry",
        location: Optional[str] = None,
        scanned_by: Optional[str] = None,
    ) -> ClientScanResult:
        """Submit a scanned payload and return the server's decision."""
        body: dict[str, Any] = {
            "payload": payload,
            "scan_type": scan_type,
            "scanned_by": scanned_by or self.scanner_id or "scanner",
        }
        if location:
            body["location"] = location

        data = self._request("post", "/scan", json=body)
        if "error" in data:
            return ClientScanResult(
                granted=False,
                code=data.get("code", "CLIENT_ERROR"),
                reason=data["error"],
                scan_type=scan_type,
                raw=data,
            )
        return ClientScanResult(
            granted=data.get("granted", False),
            code=data.get("code", ""),
            reason=data.get("reason", ""),
            scan_type=data.get("scan_type", scan_type),
            user_id=data.get("user_id"),
            user_name=data.get("user_name"),
            qr_id=data.get("qr_id"),
            log_id=data.get("log_id"),
            duplicate=data.get("duplicate", False),
            raw=data,
        )

    def history(self, member_id: str, limit: int = 50, offset: int = 0) -> list[dict[str, Any]]:
        data = self._request(
            "get", f"/scans/member/{member_id}",
            params={"limit": limit, "offset": offset},
        )
        if isinstance(data, dict) and "error" in data:
            return []
        return data

    # ── Lifecycle ──

    def close(self) -> None:
        """Close the HTTP client."""
        self._http.close()
