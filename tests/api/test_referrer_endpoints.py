"""API tests for referrer accounts, code management and stats."""

from wallet_referrals.core.config import settings
from wallet_referrals.core.timeutils import utcnow
from conftest import add_referrer, auth_headers

API = "/api/v1/referrers"


class TestBecomeReferrer:

    async def test_requires_token(self, client):
        response = await client.post(f"{API}/become")

        assert response.status_code == 401

    async def test_invalid_token(self, client):
        response = await client.get(f"{API}/status", headers={"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401

    async def test_become_is_idempotent(self, client, alice):
        first = await client.post(f"{API}/become", headers=auth_headers(alice))
        second = await client.post(f"{API}/become", headers=auth_headers(alice))

        assert first.json()["status"] == "pending"
        assert second.json()["status"] == "pending"
        assert first.json()["referrerId"] == second.json()["referrerId"]

        status_response = await client.get(f"{API}/status", headers=auth_headers(alice))
        assert status_response.json()["status"] == "pending"


class TestReferrerCodes:

    async def test_pending_referrer_cannot_manage_codes(self, client, alice):
        await client.post(f"{API}/become", headers=auth_headers(alice))

        response = await client.get(f"{API}/codes", headers=auth_headers(alice))

        assert response.status_code == 403
        assert response.json()["error"] == "not_approved"

    async def test_non_referrer_is_forbidden(self, client, bob):
        response = await client.post(f"{API}/codes", json={}, headers=auth_headers(bob))

        assert response.status_code == 403
        assert response.json()["error"] == "not_referrer"

    async def test_create_list_and_update(self, client, db, alice):
        await add_referrer(db, alice)

        created = await client.post(
            f"{API}/codes",
            json={"label": "Spring campaign", "expiresAt": "2030-01-01T00:00:00Z"},
            headers=auth_headers(alice),
        )
        assert created.status_code == 200
        code = created.json()["code"]
        assert code["label"] == "Spring campaign"
        assert code["isActive"] is True
        assert code["expiresAt"].startswith("2030-01-01")

        listed = await client.get(f"{API}/codes", headers=auth_headers(alice))
        assert [c["code"] for c in listed.json()["codes"]] == [code["code"]]

        updated = await client.patch(
            f"{API}/codes",
            json={"code": code["code"].lower(), "isActive": False},
            headers=auth_headers(alice),
        )
        assert updated.json()["code"]["isActive"] is False

    async def test_quota_is_enforced(self, client, db, alice, monkeypatch):
        monkeypatch.setattr(settings, "MAX_CODES_PER_REFERRER", 1)
        await add_referrer(db, alice, codes=["ALICE2"])

        response = await client.post(f"{API}/codes", json={}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["error"] == "limit_reached"

    async def test_cannot_update_someone_elses_code(self, client, db, alice, bob):
        await add_referrer(db, alice, codes=["ALICE2"])
        await add_referrer(db, bob, codes=["BOBB22"])

        response = await client.patch(
            f"{API}/codes", json={"code": "ALICE2", "isActive": False}, headers=auth_headers(bob)
        )

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_update_requires_a_change(self, client, db, alice):
        await add_referrer(db, alice, codes=["ALICE2"])

        response = await client.patch(f"{API}/codes", json={"code": "ALICE2"}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["message"] == "Nothing to update"


class TestReferrerStats:

    async def test_stats_after_conversion(self, client, db, alice, bob):
        await add_referrer(db, alice, codes=["ALICE2"])
        await client.post(
            "/api/v1/referrals/convert",
            json={
                "referralData": {
                    "ref": "ALICE2",
                    "fullParams": {"utm_source": "newsletter"},
                    "capturedAt": utcnow().isoformat(),
                },
            },
            headers=auth_headers(bob),
        )

        response = await client.get(f"{API}/stats", headers=auth_headers(alice))

        assert response.status_code == 200
        stats = response.json()
        assert stats["totalReferrals"] == 1
        assert stats["codeStats"][0]["usageCount"] == 1
        assert stats["utmBreakdown"]["source"] == [{"value": "newsletter", "count": 1}]
        assert stats["recentReferrals"][0]["userEmail"] == "b***@e***.com"

    async def test_stats_for_non_referrer(self, client, bob):
        response = await client.get(f"{API}/stats", headers=auth_headers(bob))

        assert response.status_code == 403
