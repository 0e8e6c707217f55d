from fastapi.testclient import TestClient
from marketplace.main import app

client = TestClient(app)


def test_security_headers():
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
    assert response.headers.get("Content-Security-Policy") == "default-src 'none'; frame-ancestors 'none'"
    assert (
        response.headers.get("Strict-Transport-Security")
        == "max-age=63072000; includeSubDomains"
    )
    assert response.headers.get("X-Frame-Options") == "DENY"
    assert response.headers.get("X-Content-Type-Options") == "nosniff"
    assert "Cache-Control" not in response.headers


def test_api_responses_are_not_cached(session_factory):
    response = client.get("/api/v1/orders/")
    assert response.status_code == 401
    assert response.headers.get("Cache-Control") == "no-store"
