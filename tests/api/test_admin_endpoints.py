"""
API tests for the admin approval workflow.

@module test_admin_endpoints
@since 1.0.0
"""

import pytest

from wallet_referrals.core.security import AuthenticatedIdentity
from conftest import add_admin, add_referrer, auth_headers

API = "/api/v1/admin"


@pytest.fixture
async def admin(db):
    await add_admin(db, "root@example.com")
    return AuthenticatedIdentity(email="root@example.com", user_id="user-root")


async def pending_code_ids(client, admin):
    response = await client.get(f"{API}/codes", headers=auth_headers(admin))
    return {item["ownerEmail"]: item["codeId"] for item in response.json()["pending"]}


class TestAdminAccess:

    async def test_check_reports_membership(self, client, admin, bob):
        assert (await client.get(f"{API}/check", headers=auth_headers(admin))).json() == {"isAdmin": True}
        assert (await client.get(f"{API}/check", headers=auth_headers(bob))).json() == {"isAdmin": False}

    async def test_non_admin_is_forbidden(self, client, bob):
        for path in ("/referrers", "/codes"):
            response = await client.get(f"{API}{path}", headers=auth_headers(bob))
            assert response.status_code == 403

    async def test_anonymous_is_unauthorized(self, client):
        response = await client.get(f"{API}/referrers")

        assert response.status_code == 401


class TestReferrerApproval:

    async def test_approve_pending_referrer(self, client, admin, bob):
        become = await client.post("/api/v1/referrers/become", headers=auth_headers(bob))
        referrer_id = become.json()["referrerId"]

        listing = await client.get(f"{API}/referrers", headers=auth_headers(admin))
        assert [r["referrerId"] for r in listing.json()["pending"]] == [referrer_id]

        response = await client.patch(
            f"{API}/referrers",
            json={"referrerId": referrer_id, "action": "approve"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "approved"
        assert response.json()["approvedAt"]
        status_response = await client.get("/api/v1/referrers/status", headers=auth_headers(bob))
        assert status_response.json()["status"] == "approved"

    async def test_reject_only_pending(self, client, db, admin, alice):
        referrer = await add_referrer(db, alice)

        response = await client.patch(
            f"{API}/referrers",
            json={"referrerId": referrer.id, "action": "reject"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "not_pending"

    async def test_notifications_toggle(self, client, db, admin, alice):
        referrer = await add_referrer(db, alice)

        response = await client.patch(
            f"{API}/referrers",
            json={"referrerId": referrer.id, "action": "enable_notifications"},
            headers=auth_headers(admin),
        )

        assert response.json()["status"] == "notifications_enabled"

    async def test_unknown_referrer(self, client, admin):
        response = await client.patch(
            f"{API}/referrers",
            json={"referrerId": "00000000-0000-4000-8000-000000000000", "action": "approve"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 404

    async def test_unknown_action_is_invalid(self, client, admin):
        response = await client.patch(
            f"{API}/referrers",
            json={"referrerId": "00000000-0000-4000-8000-000000000000", "action": "promote"},
            headers=auth_headers(admin),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"


class TestCodeApproval:

    async def test_approve_code_request(self, client, admin, bob):
        await client.post("/api/v1/referrals/request", json={"code": "BOBCODE"}, headers=auth_headers(bob))
        code_id = (await pending_code_ids(client, admin))[bob.email]

        response = await client.patch(
            f"{API}/codes", json={"codeId": code_id, "action": "approve"}, headers=auth_headers(admin)
        )

        assert response.json()["status"] == "approved"
        assert response.json()["code"] == "BOBCODE"
        status_response = await client.get("/api/v1/referrals/status", headers=auth_headers(bob))
        assert status_response.json()["status"] == "approved"
        referrer_status = await client.get("/api/v1/referrers/status", headers=auth_headers(bob))
        assert referrer_status.json()["status"] == "approved"

    async def test_conflicting_approval_and_resolution(self, client, admin, bob, carol):
        await client.post("/api/v1/referrals/request", json={"code": "SHARED"}, headers=auth_headers(bob))
        await client.post("/api/v1/referrals/request", json={"code": "SHARED"}, headers=auth_headers(carol))
        ids = await pending_code_ids(client, admin)

        first = await client.patch(
            f"{API}/codes", json={"codeId": ids[bob.email], "action": "approve"}, headers=auth_headers(admin)
        )
        conflict = await client.patch(
            f"{API}/codes", json={"codeId": ids[carol.email], "action": "approve"}, headers=auth_headers(admin)
        )

        assert first.json()["status"] == "approved"
        assert conflict.status_code == 409
        body = conflict.json()
        assert body["error"] == "code_taken"
        assert body["conflict"]["code"] == "SHARED"
        assert body["conflict"]["options"] == ["reject", "reassign"]

        reassigned = await client.patch(
            f"{API}/codes", json={"codeId": ids[carol.email], "action": "reassign"}, headers=auth_headers(admin)
        )
        assert reassigned.json()["status"] == "approved"
        assert reassigned.json()["code"] != "SHARED"

    async def test_reject_frees_the_string(self, client, admin, bob):
        await client.post("/api/v1/referrals/request", json={"code": "BOBCODE"}, headers=auth_headers(bob))
        code_id = (await pending_code_ids(client, admin))[bob.email]

        response = await client.patch(
            f"{API}/codes", json={"codeId": code_id, "action": "reject"}, headers=auth_headers(admin)
        )

        assert response.json() == {"success": True, "status": "rejected"}
        status_response = await client.get("/api/v1/referrals/status", headers=auth_headers(bob))
        assert status_response.json() == {"status": "none"}
