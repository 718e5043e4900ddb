"""
API route tests.

Covers authentication, the checkout and emission endpoints and how
service outcomes map to HTTP status codes.
"""

import base64

import pytest

from fiscalpos.services import emission_service, quota_service
from conftest import OPERATOR_PASSWORD, auth_headers, get_auth_token


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/api/auth/me"),
        ("post", "/api/sales/quote"),
        ("post", "/api/sales"),
        ("post", "/api/sales/1/emit"),
        ("post", "/api/credit-notes"),
        ("get", "/api/price-lists"),
        ("get", "/api/fiscal/status"),
        ("post", "/api/notifications/sweep"),
        ("post", "/api/cash-sessions/close"),
    ],
)
def test_endpoints_require_token(client, db_session, method, path):
    response = getattr(client, method)(path, json={})
    assert response.status_code == 401


def test_bogus_token_rejected(client, db_session):
    response = client.get("/api/auth/me", headers=auth_headers("not-a-real-token"))
    assert response.status_code == 401


class TestAuth:
    def test_login_returns_token_and_session(self, client, operator):
        response = client.post("/api/auth/login", json={"username": "cashier", "password": OPERATOR_PASSWORD})
        assert response.status_code == 200
        assert response.json["token"]
        assert response.json["user"]["username"] == "cashier"
        assert response.json["cash_session"]["status"] == "OPEN"

    def test_wrong_password(self, client, operator):
        response = client.post("/api/auth/login", json={"username": "cashier", "password": "nope"})
        assert response.status_code == 401

    def test_missing_credentials(self, client, db_session):
        response = client.post("/api/auth/login", json={"username": "cashier"})
        assert response.status_code == 400

    def test_me_and_logout(self, client, operator):
        token = get_auth_token(client, "cashier", OPERATOR_PASSWORD)
        headers = auth_headers(token)

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json["user"]["username"] == "cashier"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401


def test_health(client, db_session):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json["status"] == "healthy"
    assert response.json["notifications_pending"] == 0
    assert "environment" in response.json["fiscal"]


class TestSalesApi:
    def test_quote(self, client, operator_headers, products):
        response = client.post(
            "/api/sales/quote",
            json={"items": [{"product_id": products["coffee"].id, "quantity": 2}]},
            headers=operator_headers,
        )
        assert response.status_code == 200
        totals = response.json["cart"]["totals"]
        assert totals["subtotal_taxed_cents"] == 2000
        assert totals["tax_cents"] == 300
        assert totals["total_cents"] == 2300

    def test_quote_unknown_product(self, client, operator_headers, products):
        response = client.post(
            "/api/sales/quote",
            json={"items": [{"product_id": 999, "quantity": 1}]},
            headers=operator_headers,
        )
        assert response.status_code == 400

    def test_checkout(self, client, operator_headers, products):
        response = client.post(
            "/api/sales",
            json={
                "items": [
                    {"product_id": products["coffee"].id, "quantity": 2},
                    {"product_id": products["bread"].id, "quantity": 3},
                ],
                "payment_method": "CASH",
                "amount_tendered_cents": 5000,
            },
            headers=operator_headers,
        )
        assert response.status_code == 201
        sale = response.json["sale"]
        assert sale["total_cents"] == 3050
        assert sale["change_cents"] == 1950
        assert len(response.json["lines"]) == 2

        fetched = client.get(f"/api/sales/{sale['id']}", headers=operator_headers)
        assert fetched.status_code == 200
        assert fetched.json["sale"]["document_number"] == sale["document_number"]

    def test_checkout_bad_tender(self, client, operator_headers, products):
        response = client.post(
            "/api/sales",
            json={"items": [{"product_id": products["bread"].id, "quantity": 1}], "amount_tendered_cents": "lots"},
            headers=operator_headers,
        )
        assert response.status_code == 400

    def test_missing_sale(self, client, operator_headers):
        assert client.get("/api/sales/12345", headers=operator_headers).status_code == 404


class TestEmissionApi:
    def test_emit_invoice(self, client, operator_headers, invoice):
        response = client.post(f"/api/sales/{invoice.id}/emit", headers=operator_headers)
        assert response.status_code == 200
        result = response.json["result"]
        assert result["success"] is True
        assert result["state"] == "AUTHORIZED"
        assert result["legal_number"] == "001-001-000000001"

    def test_emit_missing_document(self, client, operator_headers, fiscal_ready):
        assert client.post("/api/sales/4242/emit", headers=operator_headers).status_code == 404

    def test_emit_receipt_refused(self, client, operator_headers, make_sale, fiscal_ready):
        receipt = make_sale()
        assert client.post(f"/api/sales/{receipt.id}/emit", headers=operator_headers).status_code == 400

    def test_environment_change_needs_confirmation(self, client, admin_headers, operator_headers, invoice, authority):
        changed = client.post("/api/fiscal/environment", json={"environment": "production"}, headers=admin_headers)
        assert changed.status_code == 200

        blocked = client.post(f"/api/sales/{invoice.id}/emit", headers=operator_headers)
        assert blocked.status_code == 409
        assert blocked.json["confirmation_required"] is True
        assert authority.submissions == []

        confirmed = client.post(
            "/api/fiscal/environment/confirm", json={"environment": "production"}, headers=operator_headers
        )
        assert confirmed.status_code == 200

        response = client.post(f"/api/sales/{invoice.id}/emit", headers=operator_headers)
        assert response.status_code == 200
        assert response.json["result"]["access_key"][23] == "2"

    def test_confirm_wrong_environment(self, client, operator_headers, fiscal_ready):
        response = client.post(
            "/api/fiscal/environment/confirm", json={"environment": "production"}, headers=operator_headers
        )
        assert response.status_code == 400

    def test_quota_exhausted(self, client, db_session, operator_headers, invoice, authority):
        quota_service.get_subscription_state().free_invoices_used = 5
        db_session.commit()

        response = client.post(f"/api/sales/{invoice.id}/emit", headers=operator_headers)

        assert response.status_code == 402
        assert response.json["details"]["reason"] == "TRIAL_EXHAUSTED"
        assert authority.calls == 0

    def test_quota_endpoint(self, client, operator_headers, fiscal_ready):
        response = client.get("/api/fiscal/quota", headers=operator_headers)
        assert response.status_code == 200
        assert response.json["can_emit"] is True
        assert response.json["free_invoice_allowance"] == 5


class TestAdminRoutes:
    def test_cashier_cannot_manage_price_lists(self, client, operator_headers):
        response = client.post("/api/price-lists", json={"name": "Wholesale"}, headers=operator_headers)
        assert response.status_code == 403

    def test_cashier_cannot_change_environment(self, client, operator_headers, fiscal_ready):
        response = client.post("/api/fiscal/environment", json={"environment": "production"}, headers=operator_headers)
        assert response.status_code == 403

    def test_price_list_flow(self, client, admin_headers, products, customer):
        created = client.post("/api/price-lists", json={"name": "Wholesale"}, headers=admin_headers)
        assert created.status_code == 201
        list_id = created.json["price_list"]["id"]

        saved = client.put(
            f"/api/price-lists/products/{products['coffee'].id}",
            json={"prices": [{"price_list_id": list_id, "price_cents": 800}]},
            headers=admin_headers,
        )
        assert saved.status_code == 200

        assigned = client.put(
            f"/api/price-lists/customers/{customer.id}",
            json={"price_list_id": list_id},
            headers=admin_headers,
        )
        assert assigned.status_code == 200

        resolved = client.get(
            f"/api/price-lists/resolve?product_id={products['coffee'].id}&customer_id={customer.id}",
            headers=admin_headers,
        )
        assert resolved.status_code == 200
        assert resolved.json["price_cents"] == 800
        assert resolved.json["source"] == "LIST"

        walk_in = client.get(f"/api/price-lists/resolve?product_id={products['coffee'].id}", headers=admin_headers)
        assert walk_in.json["price_cents"] == 1000
        assert walk_in.json["source"] == "BASE"

    def test_resolve_requires_product(self, client, admin_headers):
        assert client.get("/api/price-lists/resolve", headers=admin_headers).status_code == 400
        assert client.get("/api/price-lists/resolve?product_id=999", headers=admin_headers).status_code == 404

    def test_certificate_upload(self, client, admin_headers, db_session):
        response = client.post(
            "/api/fiscal/certificate",
            json={
                "filename": "store.p12",
                "content_base64": base64.b64encode(b"\x30\x82certificate").decode(),
                "password": "secret",
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json["certificate"]["filename"] == "store.p12"

        status = client.get("/api/fiscal/status", headers=admin_headers)
        assert status.json["context"]["certificate_loaded"] is True

    def test_certificate_upload_bad_base64(self, client, admin_headers):
        response = client.post(
            "/api/fiscal/certificate",
            json={"filename": "store.p12", "content_base64": "***", "password": "secret"},
            headers=admin_headers,
        )
        assert response.status_code == 400


class TestCreditNoteApi:
    def test_create_then_duplicate(self, client, operator_headers, invoice, authority):
        emission_service.emit_invoice(invoice.id)
        line = invoice.lines[0]
        body = {"sale_id": invoice.id, "reason": "Returned", "items": [{"sale_line_id": line.id, "quantity": 1}]}

        created = client.post("/api/credit-notes", json=body, headers=operator_headers)
        assert created.status_code == 201
        assert created.json["emission"]["result"]["state"] == "AUTHORIZED"
        assert created.json["credit_note"]["sale_legal_number"] == invoice.legal_number

        submissions = len(authority.submissions)
        duplicate = client.post("/api/credit-notes", json=body, headers=operator_headers)
        assert duplicate.status_code == 409
        assert len(authority.submissions) == submissions

    def test_sale_id_required(self, client, operator_headers):
        response = client.post("/api/credit-notes", json={"reason": "x", "items": []}, headers=operator_headers)
        assert response.status_code == 400

    def test_eligibility(self, client, operator_headers, invoice):
        response = client.get(f"/api/credit-notes/eligibility/{invoice.id}", headers=operator_headers)
        assert response.status_code == 200
        assert response.json["eligible"] is False


class TestNotificationApi:
    def test_notify_deferred_then_swept(self, client, operator_headers, invoice, mailer):
        emission_service.emit_invoice(invoice.id)
        mailer.fail_next("mailbox unavailable")

        notified = client.post(f"/api/sales/{invoice.id}/notify", json={}, headers=operator_headers)
        assert notified.status_code == 200
        assert notified.json["deferred"] is True
        assert notified.json["result"] == "DEFERRED:mailbox unavailable"

        pending = client.get("/api/notifications/pending", headers=operator_headers)
        assert pending.json["pending"] == 1
        assert pending.json["queue"][0]["document_id"] == invoice.id

        swept = client.post("/api/notifications/sweep", headers=operator_headers)
        assert swept.status_code == 200
        assert swept.json == {"total": 1, "sent": 1, "failed": 0}

    def test_notify_invalid_address(self, client, operator_headers, invoice):
        emission_service.emit_invoice(invoice.id)
        response = client.post(
            f"/api/sales/{invoice.id}/notify", json={"address": "nobody"}, headers=operator_headers
        )
        assert response.status_code == 400
