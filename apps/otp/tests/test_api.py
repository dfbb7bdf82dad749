from fastapi.testclient import TestClient

from otpcore import OTPService, SmsResult

from app.main import create_app

from .utils import FakeSms, FakeStore


PHONE = "9876543210"


def _client(expose_code: bool = False, sms=None, store=None):
    store = store if store is not None else FakeStore()
    sms = sms if sms is not None else FakeSms()
    service = OTPService(store, sms, expose_code=expose_code)
    return TestClient(create_app(service=service)), store, sms


def test_health_and_request_id():
    client, _, _ = _client()
    r = client.get("/health", headers={"X-Request-ID": "req-42"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.headers["X-Request-ID"] == "req-42"


def test_send_hides_code_by_default():
    client, store, sms = _client()
    r = client.post("/api/otp/send", json={"phone": PHONE})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["issued"] is True
    assert body["reason"] is None
    assert body["phone"] == PHONE
    assert body["expires_in_minutes"] == 10
    assert "dev_code" not in body
    assert sms.last_code not in r.text


def test_send_exposes_code_only_when_configured():
    client, _, sms = _client(expose_code=True)
    r = client.post("/api/otp/send", json={"phone": PHONE})
    assert r.status_code == 200
    assert r.json()["dev_code"] == sms.last_code


def test_send_normalizes_country_prefix():
    client, store, sms = _client()
    r = client.post("/api/otp/send", json={"phone": "+91 98765 43210"})
    assert r.status_code == 200
    assert sms.sent[0][0] == PHONE
    assert f"otp:{PHONE}" in store.data


def test_invalid_phone_is_400():
    client, _, _ = _client()
    r = client.post("/api/otp/send", json={"phone": "12345"})
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_phone"


def test_missing_fields_are_422():
    client, _, _ = _client()
    assert client.post("/api/otp/send", json={}).status_code == 422
    assert client.post("/api/otp/verify", json={"phone": PHONE}).status_code == 422
    assert client.get("/api/otp/stats").status_code == 422


def test_rate_limited_send_and_resend_are_429():
    client, _, _ = _client()
    assert client.post("/api/otp/send", json={"phone": PHONE}).status_code == 200
    for path in ("/api/otp/send", "/api/otp/resend"):
        r = client.post(path, json={"phone": PHONE})
        assert r.status_code == 429
        assert r.json()["reason"] == "rate_limited"
        assert r.json()["retry_after"] == 60
        assert r.headers["Retry-After"] == "60"


def test_delivery_failure_is_503_and_retry_is_allowed():
    sms = FakeSms(result=SmsResult(success=False, message="down", error_code="SMS_API_ERROR"))
    client, _, _ = _client(sms=sms)
    r = client.post("/api/otp/send", json={"phone": PHONE})
    assert r.status_code == 503
    assert r.json()["reason"] == "delivery_failed"

    sms.result = SmsResult(success=True, message="ok", message_id="m")
    assert client.post("/api/otp/resend", json={"phone": PHONE}).status_code == 200


def test_store_outage_is_500():
    store = FakeStore()
    store.fail_on.add("set_if_absent")
    client, _, _ = _client(store=store)
    r = client.post("/api/otp/send", json={"phone": PHONE})
    assert r.status_code == 500
    assert r.json()["reason"] == "internal_error"


def test_verify_flow():
    client, _, sms = _client()
    client.post("/api/otp/send", json={"phone": PHONE})
    code = sms.last_code
    wrong = "000000" if code != "000000" else "111111"

    r = client.post("/api/otp/verify", json={"phone": PHONE, "code": wrong})
    assert r.status_code == 400
    assert r.json() == {"verified": False, "reason": "mismatch", "message": "Invalid OTP. Please check and try again"}

    r = client.post("/api/otp/verify", json={"phone": PHONE, "code": "12"})
    assert r.status_code == 400
    assert r.json()["reason"] == "invalid_code_format"

    r = client.post("/api/otp/verify", json={"phone": PHONE, "code": code})
    assert r.status_code == 200
    assert r.json()["verified"] is True

    r = client.post("/api/otp/verify", json={"phone": PHONE, "code": code})
    assert r.status_code == 400
    assert r.json()["reason"] == "not_found_or_expired"


def test_stats_endpoint():
    client, _, _ = _client()
    r = client.get("/api/otp/stats", params={"phone": PHONE})
    assert r.status_code == 200
    assert r.json() == {"has_pending_code": False, "can_issue_now": True, "retry_after_seconds": None}

    client.post("/api/otp/send", json={"phone": PHONE})
    r = client.get("/api/otp/stats", params={"phone": PHONE})
    assert r.json() == {"has_pending_code": True, "can_issue_now": False, "retry_after_seconds": 60}


def test_metrics_endpoint_counts_sends():
    client, _, _ = _client()
    client.post("/api/otp/send", json={"phone": PHONE})
    r = client.get("/metrics")
    assert r.status_code == 200
    assert 'otp_send_total{outcome="ok"}' in r.text
