"""
Integration tests for the affiliate API
"""
import pytest


APPLICATION = {
    "website": "https://janes-filters.example.com",
    "promotional_methods": ["blog", "email"],
    "promotion_plan": "Weekly posts comparing filter ratings for allergy sufferers, plus a monthly newsletter.",
    "agree_to_terms": True,
    "company_name": "Jane's <b>Filters</b>",
}


def apply(client, headers, **overrides):
    return client.post("/api/v1/affiliates/apply", json={**APPLICATION, **overrides}, headers=headers)


@pytest.fixture
def approved_affiliate(client, customer_headers, admin_headers):
    """Application submitted by the customer and approved at 12%"""
    application = apply(client, customer_headers).json()["application"]
    response = client.post(
        f"/api/v1/admin/affiliates/applications/{application['id']}/approve",
        json={"commission_rate": 12},
        headers=admin_headers,
    )
    assert response.status_code == 200
    return response.json()


class TestApplications:
    """Applying and reviewing"""

    def test_apply(self, client, customer_headers):
        response = apply(client, customer_headers)

        assert response.status_code == 201
        application = response.json()["application"]
        assert application["status"] == "pending"
        assert application["user_id"] == "user-1"
        assert application["applicant_name"] == "Jane Doe"
        assert application["company_name"] == "Jane's Filters"

    def test_duplicate_application(self, client, customer_headers):
        apply(client, customer_headers)
        response = apply(client, customer_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    @pytest.mark.parametrize("overrides", [
        {"website": "not a url"},
        {"promotional_methods": ["billboards"]},
        {"promotional_methods": []},
        {"promotion_plan": "Too short"},
        {"agree_to_terms": False},
    ])
    def test_invalid_application(self, client, customer_headers, overrides):
        response = apply(client, customer_headers, **overrides)

        assert response.status_code == 400
        assert response.json()["error"] == "Validation Error"

    def test_requires_token(self, client):
        response = client.post("/api/v1/affiliates/apply", json=APPLICATION)
        assert response.status_code == 401

    def test_invalid_token(self, client):
        response = apply(client, {"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_program_disabled(self, client, customer_headers, admin_headers):
        client.patch("/api/v1/admin/affiliates/settings", json={"program_enabled": False}, headers=admin_headers)

        response = apply(client, customer_headers)
        assert response.status_code == 403

    def test_traffic_info_required(self, client, customer_headers, admin_headers):
        client.patch("/api/v1/admin/affiliates/settings", json={"require_traffic_info": True}, headers=admin_headers)

        assert apply(client, customer_headers).status_code == 400
        assert apply(client, customer_headers, monthly_traffic="25k visits").status_code == 201

    def test_no_affiliate_account_yet(self, client, customer_headers):
        apply(client, customer_headers)

        response = client.get("/api/v1/affiliates/me", headers=customer_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "Not Found"

    def test_admin_review(self, client, customer_headers, admin_headers):
        apply(client, customer_headers)

        pending = client.get("/api/v1/admin/affiliates/applications", headers=admin_headers).json()
        assert len(pending) == 1

        response = client.post(
            f"/api/v1/admin/affiliates/applications/{pending[0]['id']}/reject",
            json={"reason": "Site content unrelated to filtration"},
            headers=admin_headers,
        )
        assert response.json()["status"] == "rejected"
        assert response.json()["reviewed_by"] == "admin-1"
        assert client.get("/api/v1/admin/affiliates/applications", headers=admin_headers).json() == []

    def test_approve_unknown_application(self, client, admin_headers):
        response = client.post("/api/v1/admin/affiliates/applications/app_missing/approve", headers=admin_headers)
        assert response.status_code == 404

    def test_admin_routes_require_admin(self, client, customer_headers):
        response = client.get("/api/v1/admin/affiliates/overview", headers=customer_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "Forbidden"


class TestAffiliateAccount:
    """Approved affiliate self-service"""

    def test_me(self, client, customer_headers, approved_affiliate):
        response = client.get("/api/v1/affiliates/me", headers=customer_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["affiliate_code"].startswith("JANEDO")
        assert body["commission_rate"] == 12.0
        assert body["status"] == "active"
        assert body["approved_by"] == "admin-1"

    def test_update_profile(self, client, customer_headers, approved_affiliate):
        response = client.patch(
            "/api/v1/affiliates/me",
            json={"paypal_email": "payouts@janes-filters.example.com", "bank_account_info": "DE89 3704 0044"},
            headers=customer_headers,
        )

        assert response.status_code == 200
        assert response.json()["paypal_email"] == "payouts@janes-filters.example.com"
        assert "bank_account_info" not in response.json()

    def test_self_update_cannot_change_commission(self, client, customer_headers, approved_affiliate):
        client.patch("/api/v1/affiliates/me", json={"commission_rate": 50}, headers=customer_headers)

        assert client.get("/api/v1/affiliates/me", headers=customer_headers).json()["commission_rate"] == 12.0


class TestTracking:
    """Click and conversion tracking"""

    def test_click_and_conversion(self, client, customer_headers, approved_affiliate):
        code = approved_affiliate["affiliate_code"]

        click = client.post(
            "/api/v1/affiliates/track/click",
            json={"affiliate_code": code.lower(), "landing_page": "/filters/merv-13"},
            headers={"User-Agent": "pytest-browser"},
        )
        assert click.status_code == 201
        session_token = click.json()["session_token"]
        assert session_token.startswith("sess_")

        conversion = client.post(
            "/api/v1/affiliates/track/conversion",
            json={"affiliate_code": code, "order_id": "ORD-1001", "order_total": 100.0,
                  "session_token": session_token},
        )
        assert conversion.status_code == 201
        assert conversion.json()["commission_amount"] == 12.0
        assert conversion.json()["click_id"] == click.json()["click_id"]
        assert conversion.json()["commission_status"] == "pending"

        stats = client.get("/api/v1/affiliates/me/stats", headers=customer_headers).json()
        assert stats["total_clicks"] == 1
        assert stats["total_conversions"] == 1
        assert stats["conversion_rate"] == 100.0
        assert stats["pending_commission"] == 12.0

    def test_duplicate_conversion(self, client, approved_affiliate):
        payload = {"affiliate_code": approved_affiliate["affiliate_code"], "order_id": "ORD-1", "order_total": 50}

        assert client.post("/api/v1/affiliates/track/conversion", json=payload).status_code == 201
        assert client.post("/api/v1/affiliates/track/conversion", json=payload).status_code == 409

    def test_unknown_code(self, client):
        response = client.post("/api/v1/affiliates/track/click", json={"affiliate_code": "NOPE"})
        assert response.status_code == 400

    def test_negative_total_rejected(self, client, approved_affiliate):
        response = client.post(
            "/api/v1/affiliates/track/conversion",
            json={"affiliate_code": approved_affiliate["affiliate_code"], "order_id": "ORD-2", "order_total": -5},
        )
        assert response.status_code == 400


class TestAdministration:
    """Settings, commissions and payouts"""

    def test_settings_defaults_and_update(self, client, admin_headers):
        settings = client.get("/api/v1/admin/affiliates/settings", headers=admin_headers).json()
        assert settings["cookie_duration_days"] == 30
        assert settings["program_enabled"] is True

        response = client.patch(
            "/api/v1/admin/affiliates/settings",
            json={"cookie_duration_days": 45, "payout_schedule": "bi_monthly"},
            headers=admin_headers,
        )
        assert response.json()["cookie_duration_days"] == 45
        assert response.json()["payout_schedule"] == "bi_monthly"

    def test_invalid_setting_value(self, client, admin_headers):
        response = client.patch(
            "/api/v1/admin/affiliates/settings", json={"commission_hold_days": -1}, headers=admin_headers
        )
        assert response.status_code == 400

    def test_payout_lifecycle(self, client, customer_headers, admin_headers, approved_affiliate):
        affiliate_id = approved_affiliate["id"]
        client.patch("/api/v1/admin/affiliates/settings", json={"commission_hold_days": 0}, headers=admin_headers)
        client.patch(f"/api/v1/admin/affiliates/{affiliate_id}", json={"minimum_payout_threshold": 10},
                     headers=admin_headers)
        client.post(
            "/api/v1/affiliates/track/conversion",
            json={"affiliate_code": approved_affiliate["affiliate_code"], "order_id": "ORD-9", "order_total": 150},
        )

        approved = client.post("/api/v1/admin/affiliates/commissions/approve", headers=admin_headers)
        assert approved.json() == {"approved": 1}

        payout = client.post(f"/api/v1/admin/affiliates/{affiliate_id}/payouts", headers=admin_headers)
        assert payout.status_code == 201
        assert payout.json()["amount"] == 18.0
        assert payout.json()["payout_method"] == "paypal"

        paid = client.post(
            f"/api/v1/admin/affiliates/payouts/{payout.json()['id']}/paid",
            json={"transaction_id": "PP-123"},
            headers=admin_headers,
        )
        assert paid.json()["payout_status"] == "paid"
        assert paid.json()["transaction_id"] == "PP-123"

        again = client.post(f"/api/v1/admin/affiliates/payouts/{payout.json()['id']}/paid", headers=admin_headers)
        assert again.status_code == 400

        mine = client.get("/api/v1/affiliates/me/payouts", headers=customer_headers).json()
        assert [p["id"] for p in mine] == [payout.json()["id"]]
        me = client.get("/api/v1/affiliates/me", headers=customer_headers).json()
        assert me["total_commission_paid"] == 18.0

    def test_payout_without_commissions(self, client, admin_headers, approved_affiliate):
        response = client.post(f"/api/v1/admin/affiliates/{approved_affiliate['id']}/payouts", headers=admin_headers)
        assert response.status_code == 400

    def test_overview(self, client, admin_headers, approved_affiliate):
        client.post(
            "/api/v1/affiliates/track/conversion",
            json={"affiliate_code": approved_affiliate["affiliate_code"], "order_id": "ORD-5", "order_total": 200},
        )

        overview = client.get("/api/v1/admin/affiliates/overview", headers=admin_headers).json()

        assert overview["total_affiliates"] == 1
        assert overview["active_affiliates"] == 1
        assert overview["total_commission_pending"] == 24.0
        assert overview["top_affiliates"][0]["affiliate_code"] == approved_affiliate["affiliate_code"]

        listed = client.get("/api/v1/admin/affiliates", headers=admin_headers).json()
        assert [a["id"] for a in listed] == [approved_affiliate["id"]]
