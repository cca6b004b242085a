# This project was developed with assistance from AI tools.
"""Functional tests: every error body is RFC 7807 Problem Details."""

import pytest
from db import DatabaseError

from tests.factories import VALID_PERMIT_FIELDS

from .mock_db import make_mock_session
from .personas import client_maria

pytestmark = pytest.mark.functional

PROBLEM_KEYS = {"type", "title", "status", "detail", "request_id", "instance", "errors"}


def test_404_is_problem_details(make_client):
    client = make_client(client_maria(), make_mock_session(single=None))

    resp = client.get("/api/applications/999", headers={"X-Request-ID": "req-123"})

    assert resp.status_code == 404
    assert resp.headers["content-type"].startswith("application/problem+json")
    body = resp.json()
    assert set(body) == PROBLEM_KEYS
    assert body["title"] == "Not Found"
    assert body["request_id"] == "req-123"
    assert body["errors"] == []


def test_validation_error_lists_each_field(make_client):
    client = make_client(client_maria(), make_mock_session())
    payload = {**VALID_PERMIT_FIELDS, "ano_modelo": 1800, "numero_serie": "1"}
    del payload["marca"]

    resp = client.post("/api/applications/", json=payload)

    assert resp.status_code == 422
    body = resp.json()
    assert body["title"] == "Unprocessable Entity"
    assert {e["field"] for e in body["errors"]} == {"ano_modelo", "numero_serie", "marca"}
    assert all(e["message"] for e in body["errors"])


def test_unique_violation_maps_to_409(make_client):
    session = make_mock_session()
    session.flush.side_effect = DatabaseError("dup", code="23505")
    client = make_client(client_maria(), session)

    resp = client.post("/api/applications/", json=VALID_PERMIT_FIELDS)

    assert resp.status_code == 409
    assert resp.json()["detail"] == "The record already exists."


def test_other_database_errors_are_generic_500(make_client):
    session = make_mock_session()
    session.flush.side_effect = DatabaseError("boom", code="57014")
    client = make_client(client_maria(), session)

    resp = client.post("/api/applications/", json=VALID_PERMIT_FIELDS)

    assert resp.status_code == 500
    assert resp.json()["detail"] == "An unexpected error occurred."
    assert "57014" not in resp.text


def test_unhandled_exception_is_generic_500(make_client):
    session = make_mock_session()
    session.execute.side_effect = RuntimeError("driver exploded")
    client = make_client(client_maria(), session)

    resp = client.get("/api/applications/501")

    assert resp.status_code == 500
    assert "driver exploded" not in resp.text
