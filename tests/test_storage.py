from datetime import date, datetime, timedelta, timezone

import pytest
import requests

from errors import TransportFailure
from services.age_gate import evaluate
from services.consent import ParentalAttestationSubmission
from services.onboarding import OnboardingService, OnboardingState
from services.storage import (
    RemoteOnboardingStore,
    age_gate_to_dict,
    record_to_dict,
)
from utils.http_client import HttpClient

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


def _record(manager, subject="kid-1", at=NOW):
    return manager.submit_attestation(
        ParentalAttestationSubmission(subject, "p@example.com", "Jamie Carter", "Mother", True), at
    )


def test_sqlite_age_gate_upsert_overwrites(store):
    store.upsert_age_gate(evaluate("2015-01-01", "US", NOW, subject_id="kid-1"))
    store.upsert_age_gate(evaluate("2014-06-01", "GB", NOW, subject_id="kid-1"))
    got = store.get_age_gate("kid-1")
    assert got.birthdate == date(2014, 6, 1)
    assert got.country_code == "GB"
    assert got.evaluated_at == NOW
    assert store.get_age_gate("other") is None


def test_sqlite_attestations_append_in_order(store, manager):
    a = _record(manager)
    b = _record(manager, at=NOW + timedelta(days=2))
    store.append_attestation(a)
    store.append_attestation(b)
    assert store.list_attestations("kid-1") == [a, b]
    assert store.list_attestations("kid-2") == []


def test_sqlite_failure_is_transport_failure(store, manager):
    rec = _record(manager)
    store.append_attestation(rec)
    with pytest.raises(TransportFailure):
        store.append_attestation(rec)  # duplicate consent_id


class FakeClient:
    def __init__(self):
        self.calls = []
        self.responses = {}
        self.error = None

    def get_json(self, path, *, params=None, default=None):
        self.calls.append(("GET", path, params))
        if self.error:
            raise self.error
        return self.responses.get(path, default)

    def send_json(self, method, path, payload):
        self.calls.append((method, path, payload))
        if self.error:
            raise self.error
        return payload


def test_remote_store_round_trip(manager):
    client = FakeClient()
    remote = RemoteOnboardingStore(client)
    result = evaluate("2015-01-01", "US", NOW, subject_id="kid-1")
    rec = _record(manager)

    remote.upsert_age_gate(result)
    remote.append_attestation(rec)
    assert client.calls[0] == ("PUT", "/age-gates/kid-1", age_gate_to_dict(result))
    assert client.calls[1] == ("POST", "/parental-consents", record_to_dict(rec))

    client.responses["/age-gates/kid-1"] = age_gate_to_dict(result)
    client.responses["/parental-consents"] = {"items": [record_to_dict(rec)]}
    assert remote.get_age_gate("kid-1") == result
    assert remote.list_attestations("kid-1") == [rec]
    assert remote.get_age_gate("missing") is None


def test_remote_store_wraps_transport_errors():
    client = FakeClient()
    client.error = requests.ConnectionError("down")
    remote = RemoteOnboardingStore(client)
    with pytest.raises(TransportFailure):
        remote.get_age_gate("kid-1")
    with pytest.raises(TransportFailure):
        remote.list_attestations("kid-1")


def test_remote_store_rejects_malformed_payload():
    client = FakeClient()
    client.responses["/age-gates/kid-1"] = {"subject_id": "kid-1"}
    client.responses["/parental-consents"] = [{"consent_id": "x"}]
    remote = RemoteOnboardingStore(client)
    with pytest.raises(TransportFailure):
        remote.get_age_gate("kid-1")
    with pytest.raises(TransportFailure):
        remote.list_attestations("kid-1")


class _Resp:
    def __init__(self, status, body=b"{}"):
        self.status_code = status
        self.content = body
        self.url = "http://storage.test/x"

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return {"ok": True}


def test_http_client_404_returns_default(monkeypatch):
    client = HttpClient(base_url="http://storage.test", max_retries=0)
    monkeypatch.setattr(client.session, "request", lambda *a, **k: _Resp(404))
    assert client.get_json("/age-gates/x", default="nothing") == "nothing"


def test_http_client_server_error_becomes_transport_failure(monkeypatch):
    client = HttpClient(base_url="http://storage.test", max_retries=0)
    monkeypatch.setattr(client.session, "request", lambda *a, **k: _Resp(503))
    with pytest.raises(TransportFailure):
        RemoteOnboardingStore(client).get_age_gate("x")


def test_http_client_builds_urls_and_headers(monkeypatch):
    seen = {}

    def fake_request(method, url, **kw):
        seen.update(method=method, url=url, headers=kw["headers"], json=kw["json"])
        return _Resp(200)

    client = HttpClient(base_url="http://storage.test/api/", api_key="secret")
    monkeypatch.setattr(client.session, "request", fake_request)
    assert client.send_json("PUT", "/age-gates/kid-1", {"a": 1}) == {"ok": True}
    assert seen["url"] == "http://storage.test/api/age-gates/kid-1"
    assert seen["headers"]["Authorization"] == "Bearer secret"
    assert seen["json"] == {"a": 1}


def test_remote_offset_less_timestamps_read_as_utc(manager, clock):
    client = FakeClient()
    client.responses["/age-gates/kid-1"] = {
        "subject_id": "kid-1",
        "birthdate": "2015-01-01",
        "country_code": "US",
        "calculated_age": 10,
        "threshold": 13,
        "next_step": "parent_consent_required",
        "evaluated_at": "2025-03-01T12:00:00",
    }
    record = record_to_dict(_record(manager))
    record.update(issued_at="2025-03-01T12:00:00", expires_at="2026-03-01T12:00:00")
    client.responses["/parental-consents"] = {"items": [record]}
    svc = OnboardingService(RemoteOnboardingStore(client), manager, clock=clock)

    status = svc.get_status("kid-1")
    assert status.state is OnboardingState.CONSENTED
    assert status.attestation.expires_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert status.age_gate.evaluated_at.tzinfo is not None

    clock.advance(days=400)
    assert svc.get_status("kid-1").state is OnboardingState.PENDING_PARENT_CONSENT


class _TrackedConnection:
    def __init__(self, conn, opened):
        self._conn = conn
        self.closed = False
        opened.append(self)

    def __getattr__(self, name):
        return getattr(self._conn, name)

    def __enter__(self):
        self._conn.__enter__()
        return self

    def __exit__(self, *exc):
        return self._conn.__exit__(*exc)

    def close(self):
        self.closed = True
        self._conn.close()


def test_sqlite_connections_are_closed(store, manager, monkeypatch):
    opened = []
    connect = store._connect
    monkeypatch.setattr(store, "_connect", lambda: _TrackedConnection(connect(), opened))

    store.upsert_age_gate(evaluate("2015-01-01", "US", NOW, subject_id="kid-1"))
    store.get_age_gate("kid-1")
    store.append_attestation(_record(manager))
    store.list_attestations("kid-1")

    assert len(opened) == 4
    assert all(c.closed for c in opened)
