# This project was developed with assistance from AI tools.
"""Functional tests: client persona journey.

Clients create applications, edit them until payment starts, follow the
status, pay by card or OXXO, renew issued permits inside the window and
download permit files.
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
import stripe
from db import PaymentVerificationLog, PermitApplication
from db.enums import PermitStatus

from src.core.config import settings
from tests.factories import VALID_PERMIT_FIELDS, make_permit_app, make_result

from .data_factory import (
    make_app_maria_issued,
    make_app_maria_unpaid,
    maria_applications,
)
from .mock_db import added, make_mock_session, make_sequenced_session
from .personas import client_maria

pytestmark = pytest.mark.functional


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestListAndGet:
    def test_list_own_applications(self, make_client):
        client = make_client(client_maria(), make_mock_session(items=maria_applications()))

        resp = client.get("/api/applications/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["pagination"]["total"] == 2
        assert data["pagination"]["has_more"] is False
        assert [a["id"] for a in data["data"]] == [501, 601]

    def test_get_own_application(self, make_client):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_unpaid()))

        resp = client.get("/api/applications/501")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "AWAITING_PAYMENT"
        assert body["curp_rfc"] == VALID_PERMIT_FIELDS["curp_rfc"]
        assert body["importe"] == "150.00"

    def test_limit_is_bounded(self, make_client):
        client = make_client(client_maria(), make_mock_session(items=[]))
        assert client.get("/api/applications/?limit=500").status_code == 422


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------


class TestCreate:
    def test_card_application_starts_awaiting_payment(self, make_client):
        session = make_mock_session()
        client = make_client(client_maria(), session)

        resp = client.post("/api/applications/", json=VALID_PERMIT_FIELDS)

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "AWAITING_PAYMENT"
        assert body["user_id"] == 101
        [created] = added(session, PermitApplication)
        assert created.nombre_completo == VALID_PERMIT_FIELDS["nombre_completo"]
        session.commit.assert_awaited_once()

    def test_oxxo_application_starts_awaiting_oxxo(self, make_client):
        client = make_client(client_maria(), make_mock_session())

        resp = client.post("/api/applications/", json={**VALID_PERMIT_FIELDS, "payment_method": "oxxo"})

        assert resp.status_code == 201
        assert resp.json()["status"] == "AWAITING_OXXO_PAYMENT"

    def test_invalid_curp_is_rejected_with_field_error(self, make_client):
        session = make_mock_session()
        client = make_client(client_maria(), session)

        resp = client.post("/api/applications/", json={**VALID_PERMIT_FIELDS, "curp_rfc": "XXXX"})

        assert resp.status_code == 422
        fields = [e["field"] for e in resp.json()["errors"]]
        assert "curp_rfc" in fields
        session.add.assert_not_called()


class TestUpdate:
    def test_edit_before_payment(self, make_client):
        app = make_app_maria_unpaid()
        session = make_mock_session(single=app)
        client = make_client(client_maria(), session)

        resp = client.patch("/api/applications/501", json={"color": "Blanco"})

        assert resp.status_code == 200
        assert resp.json()["color"] == "Blanco"
        session.commit.assert_awaited_once()

    def test_edit_after_payment_is_conflict(self, make_client):
        session = make_mock_session(single=make_app_maria_issued())
        client = make_client(client_maria(), session)

        resp = client.patch("/api/applications/601", json={"color": "Blanco"})

        assert resp.status_code == 409
        session.rollback.assert_awaited_once()
        session.commit.assert_not_awaited()

    def test_edit_missing_is_404(self, make_client):
        client = make_client(client_maria(), make_mock_session(single=None))
        assert client.patch("/api/applications/999", json={"color": "Blanco"}).status_code == 404


# ---------------------------------------------------------------------------
# Status & renewal
# ---------------------------------------------------------------------------


class TestStatusAndRenewal:
    def test_status_summary(self, make_client):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_unpaid()))

        resp = client.get("/api/applications/501/status")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status_info"]["label"] == "Pago pendiente"
        assert "PAYMENT_RECEIVED" in body["allowed_transitions"]

    def test_renewal_eligibility_inside_window(self, make_client):
        expires = datetime.now(UTC).date() + timedelta(days=3)
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued(expires)))

        resp = client.get("/api/applications/601/renewal-eligibility")

        assert resp.status_code == 200
        assert resp.json()["eligible"] is True
        assert resp.json()["days_until_expiration"] == 3

    def test_renew_creates_pending_renewal(self, make_client):
        expires = datetime.now(UTC).date() + timedelta(days=2)
        original = make_app_maria_issued(expires)
        session = make_sequenced_session(make_result(single=original), make_result(count=0))
        client = make_client(client_maria(), session)

        resp = client.post("/api/applications/601/renew")

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "RENEWAL_PENDING"
        assert body["renewed_from_id"] == 601
        assert body["renewal_count"] == 1

    def test_renew_outside_window_is_conflict(self, make_client):
        expires = datetime.now(UTC).date() + timedelta(days=25)
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued(expires)))

        resp = client.post("/api/applications/601/renew")

        assert resp.status_code == 409
        assert "Renewal opens" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Permit download
# ---------------------------------------------------------------------------


class TestPermitDownload:
    def test_ready_permit_returns_presigned_url(self, make_client, mock_storage):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued()))

        resp = client.get("/api/applications/601/permits/permiso")

        assert resp.status_code == 200
        assert resp.json()["url"] == "https://s3.test/permits/signed"
        mock_storage.file_exists.assert_awaited_once_with("permits/601/permiso/permiso.pdf")

    def test_unpaid_application_has_no_permit(self, make_client, mock_storage):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_unpaid()))

        resp = client.get("/api/applications/501/permits/permiso")

        assert resp.status_code == 409
        mock_storage.file_exists.assert_not_awaited()

    def test_missing_object_is_404(self, make_client, mock_storage):
        mock_storage.file_exists.return_value = False
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued()))

        resp = client.get("/api/applications/601/permits/recibo")

        assert resp.status_code == 404
        assert resp.json()["detail"] == "Permit file not found"

    def test_unset_file_path_is_404(self, make_client, mock_storage):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued()))

        resp = client.get("/api/applications/601/permits/placas")

        assert resp.status_code == 404
        mock_storage.file_exists.assert_not_awaited()

    def test_storage_failure_is_500_not_404(self, make_client, mock_storage):
        from src.services.storage import FileSystemError

        mock_storage.file_exists.side_effect = FileSystemError("denied", key="k", operation="exists")
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued()))

        resp = client.get("/api/applications/601/permits/permiso")

        assert resp.status_code == 500
        assert resp.json()["detail"] == "An unexpected error occurred."

    def test_unknown_file_type_is_422(self, make_client, mock_storage):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_issued()))
        assert client.get("/api/applications/601/permits/poliza").status_code == 422


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


@pytest.fixture
def provider_key(monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_API_KEY", "sk_test_functional")


class TestPayment:
    def test_card_payment_returns_client_secret(self, make_client, provider_key):
        app = make_app_maria_unpaid()
        session = make_mock_session(single=app)
        client = make_client(client_maria(), session)
        intent = {
            "id": "pi_card",
            "status": "requires_payment_method",
            "client_secret": "pi_card_secret_abc",
            "amount": 15000,
            "currency": "mxn",
        }

        with patch.object(stripe.PaymentIntent, "create", return_value=intent):
            resp = client.post("/api/applications/501/payment", json={"payment_method": "card"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["payment_intent_id"] == "pi_card"
        assert body["client_secret"] == "pi_card_secret_abc"
        assert body["amount"] == "150"
        assert body["status"] == "AWAITING_PAYMENT"
        assert app.payment_processor_order_id == "pi_card"
        session.commit.assert_awaited_once()

    def test_oxxo_payment_returns_voucher(self, make_client, provider_key):
        app = make_app_maria_unpaid()
        session = make_mock_session(single=app)
        client = make_client(client_maria(), session)
        intent = {
            "id": "pi_oxxo",
            "status": "requires_action",
            "amount": 15000,
            "currency": "mxn",
            "next_action": {
                "type": "oxxo_display_details",
                "oxxo_display_details": {
                    "number": "93000262280014",
                    "expires_after": 1767225600,
                    "hosted_voucher_url": "https://payments.test/voucher/pi_oxxo",
                },
            },
        }

        with patch.object(stripe.PaymentIntent, "create", return_value=intent):
            resp = client.post("/api/applications/501/payment", json={"payment_method": "oxxo"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "AWAITING_OXXO_PAYMENT"
        assert body["oxxo_reference"] == "93000262280014"
        assert body["voucher_url"] == "https://payments.test/voucher/pi_oxxo"
        assert body["expires_at"].startswith("2026-01-01")
        [log] = added(session, PaymentVerificationLog)
        assert log.to_status == "AWAITING_OXXO_PAYMENT"

    def test_paid_application_is_conflict(self, make_client, provider_key):
        session = make_mock_session(single=make_app_maria_issued())
        client = make_client(client_maria(), session)

        with patch.object(stripe.PaymentIntent, "create") as create:
            resp = client.post("/api/applications/601/payment", json={"payment_method": "card"})

        assert resp.status_code == 409
        create.assert_not_called()

    def test_provider_failure_is_502_and_rolls_back(self, make_client, provider_key):
        session = make_mock_session(single=make_app_maria_unpaid())
        client = make_client(client_maria(), session)

        with patch.object(
            stripe.PaymentIntent, "create", side_effect=stripe.APIConnectionError("network down")
        ):
            resp = client.post("/api/applications/501/payment", json={"payment_method": "card"})

        assert resp.status_code == 502
        session.commit.assert_not_awaited()

    def test_unknown_payment_method_is_422(self, make_client, provider_key):
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_unpaid()))
        resp = client.post("/api/applications/501/payment", json={"payment_method": "spei"})
        assert resp.status_code == 422

    def test_payments_not_configured_is_503(self, make_client, monkeypatch):
        monkeypatch.setattr(settings, "STRIPE_API_KEY", None)
        client = make_client(client_maria(), make_mock_session(single=make_app_maria_unpaid()))

        resp = client.post("/api/applications/501/payment", json={"payment_method": "card"})

        assert resp.status_code == 503

    def test_payment_status_reports_provider_state(self, make_client, provider_key):
        app = make_permit_app(
            id=501,
            status=PermitStatus.PAYMENT_PROCESSING,
            payment_processor_order_id="pi_card",
        )
        client = make_client(client_maria(), make_mock_session(single=app))

        with patch.object(stripe.PaymentIntent, "retrieve", return_value={"id": "pi_card", "status": "processing"}):
            resp = client.get("/api/applications/501/payment")

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "PAYMENT_PROCESSING"
        assert body["payment_intent_id"] == "pi_card"
        assert body["provider_status"] == "processing"

    def test_payment_status_of_missing_application_is_404(self, make_client, provider_key):
        client = make_client(client_maria(), make_mock_session(single=None))
        assert client.get("/api/applications/999/payment").status_code == 404
