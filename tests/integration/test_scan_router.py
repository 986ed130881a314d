"""Integration tests for scan history endpoints."""

import pytest


async def _scan(client, admin_headers, payload="garbage", scanned_by="admin-1", scan_type="entry"):
    resp = await client.post("/scan", json={
        "payload": payload, "scan_type": scan_type, "scanned_by": scanned_by,
    }, headers=admin_headers)
    return resp.json()


async def _granted_scan(client, admin_headers, make_member, **kwargs):
    member_id = await make_member(**kwargs)
    payload = (await client.post(f"/qr/{member_id}", headers=admin_headers)).json()["payload"]
    return member_id, await _scan(client, admin_headers, payload)


class TestMemberHistory:
    async def test_history(self, client, admin_headers, make_member):
        member_id, decision = await _granted_scan(client, admin_headers, make_member)
        resp = await client.get(f"/scans/member/{member_id}", headers=admin_headers)
        assert resp.status_code == 200
        logs = resp.json()
        assert len(logs) == 1
        assert logs[0]["id"] == decision["log_id"]
        assert logs[0]["outcome"] == "granted"
        assert logs[0]["qr_version"] == 1

    async def test_history_unknown_member_empty(self, client, admin_headers):
        resp = await client.get("/scans/member/nobody", headers=admin_headers)
        assert resp.json() == []

    async def test_history_limit_validated(self, client, admin_headers):
        resp = await client.get("/scans/member/x?limit=0", headers=admin_headers)
        assert resp.status_code == 422


class TestListScans:
    async def test_filters(self, client, admin_headers, make_member):
        await _granted_scan(client, admin_headers, make_member)
        await _scan(client, admin_headers, "garbage-1")
        await _scan(client, admin_headers, "garbage-2", scan_type="exit")

        everything = (await client.get("/scans", headers=admin_headers)).json()
        denied = (await client.get("/scans?outcome=denied", headers=admin_headers)).json()
        exits = (await client.get("/scans?scan_type=exit", headers=admin_headers)).json()

        assert len(everything) == 3
        assert len(denied) == 2
        assert len(exits) == 1

    async def test_time_range(self, client, admin_headers):
        await _scan(client, admin_headers)
        resp = await client.get(
            "/scans",
            params={"start": "2000-01-01T00:00:00Z", "end": "2000-01-02T00:00:00Z"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == []

    async def test_bad_outcome_filter(self, client, admin_headers):
        resp = await client.get("/scans?outcome=maybe", headers=admin_headers)
        assert resp.status_code == 422


class TestStats:
    async def test_stats(self, client, admin_headers, make_member):
        await _granted_scan(client, admin_headers, make_member)
        await _scan(client, admin_headers, "garbage-1")

        resp = await client.get("/scans/stats", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json() == {
            "total_scans": 2,
            "granted_scans": 1,
            "denied_scans": 1,
            "today_scans": 2,
        }


class TestCorrections:
    async def test_correct_denial(self, client, admin_headers):
        decision = await _scan(client, admin_headers)
        resp = await client.post(f"/scans/{decision['log_id']}/corrections", json={
            "scanned_by": "supervisor", "outcome": "granted", "note": "known member",
        }, headers=admin_headers)
        assert resp.status_code == 201
        data = resp.json()
        assert data["corrects_id"] == decision["log_id"]
        assert data["outcome"] == "granted"
        assert data["reason_code"] == "CORRECTION"

        everything = (await client.get("/scans", headers=admin_headers)).json()
        assert len(everything) == 2
        original = next(log for log in everything if log["id"] == decision["log_id"])
        assert original["outcome"] == "denied"

    async def test_correct_unknown(self, client, admin_headers):
        resp = await client.post("/scans/missing/corrections", json={
            "scanned_by": "supervisor",
        }, headers=admin_headers)
        assert resp.status_code == 404
