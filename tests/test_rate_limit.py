"""Rate limit: 429 after the per-minute budget, gateway notifications exempt."""
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.middleware import RateLimitMiddleware


def make_client(limit=3, checkout_limit=1):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, limit_per_minute=limit, checkout_limit_per_minute=checkout_limit)

    @app.get("/ping")
    def ping():
        return {"ok": True}

    @app.post("/sales/content/abc/checkout")
    def checkout():
        return {"ok": True}

    @app.post("/sales/payments/notify")
    def notify():
        return {"ok": True}

    return TestClient(app)


def test_requests_over_limit_get_429():
    client = make_client()
    for i in range(3):
        assert client.get("/ping").status_code == 200, f"Request {i+1} should be 200"
    r = client.get("/ping")
    assert r.status_code == 429
    assert r.json()["detail"] == "Too many requests. Please try again later."


def test_checkout_has_tighter_limit():
    client = make_client()
    assert client.post("/sales/content/abc/checkout").status_code == 200
    assert client.post("/sales/content/abc/checkout").status_code == 429


def test_gateway_notifications_are_not_limited():
    client = make_client()
    for _ in range(10):
        assert client.post("/sales/payments/notify").status_code == 200
    # and they do not eat into the caller's budget
    assert client.get("/ping").status_code == 200
