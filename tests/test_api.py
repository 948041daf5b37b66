import sys
from pathlib import Path
import httpx
import pytest

repo_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(repo_root))

import api
from api import ApiError, BackendClient, fetch_json


def mock_client(handler, base_url="http://backend"):
    return httpx.Client(base_url=base_url, transport=httpx.MockTransport(handler))


def test_fetch_json_retries_network_errors_only(monkeypatch):
    monkeypatch.setattr(api.time, "sleep", lambda seconds: None)
    attempts = []

    def handler(request):
        attempts.append(1)
        if len(attempts) < 3:
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200, json=[{"id": 1}])

    assert fetch_json(mock_client(handler), "GET", "/api/examples", retries=2) == [{"id": 1}]
    assert len(attempts) == 3


def test_fetch_json_gives_up_after_retries(monkeypatch):
    monkeypatch.setattr(api.time, "sleep", lambda seconds: None)

    def handler(request):
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(ApiError, match="Network error"):
        fetch_json(mock_client(handler), "GET", "/x", retries=1)


def test_fetch_json_does_not_retry_timeouts():
    attempts = []

    def handler(request):
        attempts.append(1)
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(ApiError, match="timed out"):
        fetch_json(mock_client(handler), "GET", "/x", retries=3)
    assert len(attempts) == 1


def test_fetch_json_http_error_and_empty_body():
    def handler(request):
        if request.url.path == "/missing":
            return httpx.Response(404, text="nope")
        return httpx.Response(204)

    http = mock_client(handler)
    with pytest.raises(ApiError) as exc:
        fetch_json(http, "GET", "/missing", retries=2)
    assert exc.value.status_code == 404
    assert exc.value.body == "nope"
    assert fetch_json(http, "GET", "/empty") is None


def test_auth_fetch_uses_backend_message_or_generic_status():
    def handler(request):
        if request.url.path == "/api/orders/my":
            return httpx.Response(403, json={"message": "Access denied"})
        return httpx.Response(500, text="Internal Server Error")

    backend = BackendClient(mock_client(handler), token_provider=lambda: "tok")
    with pytest.raises(ApiError, match="Access denied"):
        backend.get_my_orders()
    with pytest.raises(ApiError) as exc:
        backend.get_sales_report("2025-01-01", "2025-01-31")
    assert str(exc.value) == "Request failed with status 500"


def test_bearer_token_sent_when_stored():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        seen["query"] = dict(request.url.params)
        return httpx.Response(200, json={"fromDate": "2025-01-01", "toDate": "2025-01-31"})

    backend = BackendClient(mock_client(handler), token_provider=lambda: "abc")
    report = backend.get_sales_report("2025-01-01", "2025-01-31")
    assert seen["auth"] == "Bearer abc"
    assert seen["query"] == {"fromDate": "2025-01-01", "toDate": "2025-01-31"}
    assert report.region_buckets == []


def test_envelope_errors():
    def handler(request):
        if request.url.path == "/api/auth/login":
            return httpx.Response(200, text="<html>")
        return httpx.Response(200, json={"success": True, "data": None})

    backend = BackendClient(mock_client(handler))
    with pytest.raises(ApiError, match="Invalid JSON response from /api/auth/login"):
        backend.login_user(api.LoginPayload(email="a@icytales.com", password="x"))
    with pytest.raises(ApiError, match="Empty response from server"):
        backend.get_current_user("tok")


def test_fetch_products_failure_uses_response_text():
    def handler(request):
        return httpx.Response(503, text="maintenance")

    with pytest.raises(ApiError, match="maintenance"):
        BackendClient(mock_client(handler)).fetch_products()
