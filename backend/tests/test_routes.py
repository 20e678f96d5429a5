# Overview: Pytest coverage for the JSON API surface.

"""
API Route Tests

Exercise the blueprints end to end through the Flask test client: status
codes for each error class, actor enforcement on mutating endpoints, and
response shapes.
"""

from conftest import BRANCH, OTHER_BRANCH, actor_headers, bill_payload, product_line, service_line
from salon_pos.services.loyalty_service import grant_loyalty_points
from salon_pos.services.referral_service import get_referral_code


def _post_bill(client, **overrides):
    lines = overrides.pop("lines", None)
    return client.post("/api/bills", json=bill_payload(lines, **overrides), headers=actor_headers())


class TestHealth:
    def test_health_ok(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["bills"] == 0
        assert body["timestamp"].endswith("Z")


class TestBillRoutes:
    def test_create_bill(self, client, db_session):
        response = _post_bill(client)

        assert response.status_code == 201
        body = response.get_json()
        assert body["bill"]["status"] == "paid"
        assert body["bill"]["total_cents"] == 5000
        assert body["bill"]["created_by"] == "staff-1"
        assert len(body["bill"]["lines"]) == 1
        assert [s["name"] for s in body["steps"]] == ["loyalty.earn", "client.stats", "referral.code"]
        assert body["warnings"] == []

    def test_create_requires_actor(self, client, db_session):
        response = client.post("/api/bills", json=bill_payload())

        assert response.status_code == 401

    def test_create_rejects_invalid_payload(self, client, db_session):
        response = _post_bill(client, lines=[])

        assert response.status_code == 400
        assert "line" in response.get_json()["error"]

    def test_create_with_shortage_reports_warning(self, client, db_session):
        response = _post_bill(client, lines=[product_line("P-GEL", quantity=2)])

        assert response.status_code == 201
        body = response.get_json()
        assert body["bill"]["status"] == "paid"
        stock_step = body["steps"][0]
        assert stock_step["name"] == "stock.otc"
        assert stock_step["outcome"] == "degraded"
        assert stock_step["data"]["shortfall"] == 2
        assert len(body["warnings"]) == 1

    def test_create_with_insufficient_points(self, client, db_session):
        response = _post_bill(client, loyalty_points_used=5)

        assert response.status_code == 400
        assert response.get_json()["code"] == "INSUFFICIENT_POINTS"

    def test_get_bill(self, client, db_session):
        bill_id = _post_bill(client).get_json()["bill"]["id"]

        assert client.get(f"/api/bills/{bill_id}").status_code == 200
        assert client.get("/api/bills/9999").status_code == 404

    def test_list_bills(self, client, db_session):
        _post_bill(client)
        _post_bill(client, branch_id=OTHER_BRANCH)

        response = client.get(f"/api/bills?branch_id={BRANCH}&status=paid")

        assert response.status_code == 200
        assert response.get_json()["count"] == 1
        assert client.get("/api/bills").status_code == 400
        assert client.get(f"/api/bills?branch_id={BRANCH}&status=open").status_code == 400

    def test_client_bills(self, client, db_session):
        _post_bill(client)
        _post_bill(client, client_id="client-2")

        response = client.get("/api/bills/client/client-2")

        assert response.get_json()["count"] == 1

    def test_refund(self, client, db_session):
        bill_id = _post_bill(client).get_json()["bill"]["id"]

        response = client.post(
            f"/api/bills/{bill_id}/refund",
            json={"amount_cents": 2000, "reason": "Color faded"},
            headers=actor_headers("manager-1", "Mia Manager"),
        )

        assert response.status_code == 200
        body = response.get_json()["bill"]
        assert body["status"] == "refunded"
        assert body["refund_amount_cents"] == 2000
        assert body["approved_by"] == "manager-1"

        again = client.post(f"/api/bills/{bill_id}/refund", json={}, headers=actor_headers())
        assert again.status_code == 409

    def test_refund_amount_validated(self, client, db_session):
        bill_id = _post_bill(client).get_json()["bill"]["id"]

        response = client.post(f"/api/bills/{bill_id}/refund", json={"amount_cents": 999999}, headers=actor_headers())

        assert response.status_code == 400

    def test_void_requires_witness(self, client, db_session):
        bill_id = _post_bill(client).get_json()["bill"]["id"]

        response = client.post(
            f"/api/bills/{bill_id}/void",
            json={"reason": "Duplicate", "witness": "manager-2"},
            headers=actor_headers(),
        )

        assert response.status_code == 400
        assert response.get_json()["code"] == "WITNESS_REQUIRED"

    def test_void_then_void_again(self, client, db_session):
        bill_id = _post_bill(client).get_json()["bill"]["id"]
        body = {"reason": "Duplicate", "witness": {"id": "manager-2", "email": "m2@salon.test"}}

        first = client.post(f"/api/bills/{bill_id}/void", json=body, headers=actor_headers())
        second = client.post(f"/api/bills/{bill_id}/void", json=body, headers=actor_headers())

        assert first.status_code == 200
        assert first.get_json()["bill"]["witness_email"] == "m2@salon.test"
        assert second.status_code == 409
        assert second.get_json()["code"] == "ALREADY_FINALIZED"

    def test_daily_summary(self, client, db_session):
        created_at = _post_bill(client).get_json()["bill"]["created_at"]

        response = client.get(f"/api/bills/summary?branch_id={BRANCH}&date={created_at[:10]}")

        assert response.status_code == 200
        assert response.get_json()["gross_sales_cents"] == 5000
        assert client.get(f"/api/bills/summary?branch_id={BRANCH}").status_code == 400


class TestLoyaltyRoutes:
    def test_balances(self, client, db_session):
        grant_loyalty_points("client-1", BRANCH, 40, "seed")

        single = client.get(f"/api/loyalty/client-1?branch_id={BRANCH}").get_json()
        all_branches = client.get("/api/loyalty/client-1").get_json()

        assert single["points"] == 40
        assert len(all_branches["accounts"]) == 1

    def test_redeem(self, client, db_session):
        grant_loyalty_points("client-1", BRANCH, 40, "seed")

        ok = client.post(
            "/api/loyalty/client-1/redeem", json={"branch_id": BRANCH, "points": 15}, headers=actor_headers(),
        )
        too_many = client.post(
            "/api/loyalty/client-1/redeem", json={"branch_id": BRANCH, "points": 500}, headers=actor_headers(),
        )

        assert ok.status_code == 200
        assert ok.get_json()["balance"] == 25
        assert ok.get_json()["discount_cents"] == 1500
        assert too_many.status_code == 409

    def test_redeem_rejects_non_integer_bill_id(self, client, db_session):
        grant_loyalty_points("client-1", BRANCH, 40, "seed")

        response = client.post(
            "/api/loyalty/client-1/redeem",
            json={"branch_id": BRANCH, "points": 10, "bill_id": "abc"},
            headers=actor_headers(),
        )

        assert response.status_code == 400
        assert "bill_id" in response.get_json()["error"]
        balances = client.get(f"/api/loyalty/client-1?branch_id={BRANCH}").get_json()
        assert balances["points"] == 40

    def test_grant_and_history(self, client, db_session):
        response = client.post(
            "/api/loyalty/client-1/grant",
            json={"branch_id": BRANCH, "points": 10, "description": "Birthday"},
            headers=actor_headers(),
        )

        assert response.status_code == 201
        history = client.get("/api/loyalty/client-1/history").get_json()["entries"]
        assert [e["points"] for e in history] == [10]

    def test_verify(self, client, db_session):
        grant_loyalty_points("client-1", BRANCH, 10, "seed")

        body = client.get(f"/api/loyalty/client-1/verify?branch_id={BRANCH}").get_json()

        assert body["consistent"] is True
        assert body["balance"] == body["log_sum"] == 10


class TestReferralRoutes:
    def test_code_requires_visit(self, client, db_session):
        assert client.get(f"/api/referrals/codes/client-1?branch_id={BRANCH}").status_code == 404

        _post_bill(client)
        response = client.get(f"/api/referrals/codes/client-1?branch_id={BRANCH}")

        assert response.status_code == 200
        assert response.get_json()["referral_code"].startswith("CLIEBRAN")

    def test_validate(self, client, db_session):
        _post_bill(client)
        code = get_referral_code("client-1", BRANCH)

        assert client.get(f"/api/referrals/validate/{code}").get_json()["valid"] is True
        assert client.get("/api/referrals/validate/NOTREAL").get_json()["valid"] is False

    def test_process_once(self, client, db_session):
        _post_bill(client)
        code = get_referral_code("client-1", BRANCH)
        body = {"new_client_id": "client-2", "referral_code": code}

        first = client.post("/api/referrals/process", json=body, headers=actor_headers())
        second = client.post("/api/referrals/process", json=body, headers=actor_headers())

        assert first.status_code == 201
        assert first.get_json()["referrer_points"] == 50
        assert second.status_code == 409

    def test_process_errors(self, client, db_session):
        _post_bill(client)
        code = get_referral_code("client-1", BRANCH)

        unknown = client.post(
            "/api/referrals/process", json={"new_client_id": "client-2", "referral_code": "NOPE"},
            headers=actor_headers(),
        )
        self_referral = client.post(
            "/api/referrals/process", json={"new_client_id": "client-1", "referral_code": code},
            headers=actor_headers(),
        )

        assert unknown.status_code == 400
        assert unknown.get_json()["code"] == "INVALID_CODE"
        assert self_referral.status_code == 400
        assert client.post("/api/referrals/process", json={}).status_code == 401

    def test_stats(self, client, db_session):
        assert client.get("/api/referrals/stats/client-1").get_json()["total_referrals"] == 0


class TestInventoryRoutes:
    def test_deduct_and_preview(self, client, db_session, make_batch):
        make_batch("P-GEL", 5, days_ago=2)
        make_batch("P-GEL", 5, days_ago=1)

        preview = client.get(f"/api/inventory/{BRANCH}/products/P-GEL/preview?quantity=7")
        deduct = client.post(
            f"/api/inventory/{BRANCH}/deduct",
            json={"product_id": "P-GEL", "usage_type": "otc", "quantity": 7, "reason": "Damaged"},
            headers=actor_headers(),
        )

        assert preview.status_code == 200
        assert len(preview.get_json()["allocations"]) == 2
        assert deduct.status_code == 200
        assert deduct.get_json()["deducted"] == 7
        available = client.get(f"/api/inventory/{BRANCH}/products/P-GEL/available").get_json()
        assert available["available"] == 3

    def test_deduct_shortage_is_not_an_error(self, client, db_session):
        response = client.post(
            f"/api/inventory/{BRANCH}/deduct",
            json={"product_id": "P-GEL", "usage_type": "salon-use", "quantity": 2, "reason": "Service Use"},
            headers=actor_headers(),
        )

        assert response.status_code == 200
        assert response.get_json()["success"] is False
        assert response.get_json()["shortfall"] == 2

    def test_deduct_writes_audit_entry(self, client, db_session, make_batch):
        make_batch("P-GEL", 5)

        client.post(
            f"/api/inventory/{BRANCH}/deduct",
            json={"product_id": "P-GEL", "usage_type": "otc", "quantity": 2, "reason": "Damaged"},
            headers=actor_headers("staff-7", "Ola Owner"),
        )

        entries = client.get(f"/api/audit/branches/{BRANCH}").get_json()["entries"]
        assert [e["action"] for e in entries] == ["stock.deduct"]
        assert entries[0]["performed_by"] == "staff-7"
        assert entries[0]["outcome"] == "ok"

    def test_deduct_rejects_bad_usage_type(self, client, db_session):
        response = client.post(
            f"/api/inventory/{BRANCH}/deduct",
            json={"product_id": "P-GEL", "usage_type": "backroom", "quantity": 1, "reason": "x"},
            headers=actor_headers(),
        )

        assert response.status_code == 400

    def test_movements_for_bill(self, client, db_session, make_batch):
        make_batch("P-SHAMPOO", 5)
        bill_id = _post_bill(client, lines=[service_line(), product_line()]).get_json()["bill"]["id"]

        movements = client.get(f"/api/inventory/{BRANCH}/movements?bill_id={bill_id}").get_json()["movements"]

        assert len(movements) == 1


class TestAuditRoutes:
    def test_bill_and_branch_logs(self, client, db_session):
        bill_id = _post_bill(client, client_id=None).get_json()["bill"]["id"]

        bill_log = client.get(f"/api/audit/bills/{bill_id}").get_json()["entries"]
        branch_log = client.get(f"/api/audit/branches/{BRANCH}?limit=10").get_json()["entries"]

        assert [e["action"] for e in bill_log] == ["bill.create"]
        assert len(branch_log) == 1
        assert client.get(f"/api/audit/branches/{BRANCH}?limit=zero").status_code == 400
