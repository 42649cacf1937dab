"""End-to-end tests for the activity tracking middleware."""

from __future__ import annotations

import logging

import pytest

pytest.importorskip("fastapi")
import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.testclient import TestClient

from telemetry.domain.entities import ActivityType
from telemetry.infrastructure.database import initialize_database
from telemetry.main import create_app

CHROME_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def _build_app(settings) -> FastAPI:
    app = create_app(settings)

    @app.post("/api/auth/local")
    def login(payload: dict, request: Request) -> dict:
        if payload.get("password") != "secret":
            raise HTTPException(status_code=401, detail="Invalid credentials")
        request.state.activity_actor = payload["identifier"]
        return {"jwt": "token"}

    @app.get("/api/products")
    def list_products() -> list[dict]:
        return [{"id": 1}]

    @app.post("/api/cart")
    def add_to_cart() -> dict:
        raise RuntimeError("cart service down")

    @app.get("/api/user-activities/ping")
    def ping() -> dict:
        return {"pong": True}

    return app


def _all_records(app: FastAPI):
    return app.state.activity_repository.find_many(sort=(("id", "asc"),)).unwrap()


def test_login_is_recorded_with_actor_from_handler(settings):
    app = _build_app(settings)

    with TestClient(app) as client:
        response = client.post(
            "/api/auth/local",
            json={"identifier": "user-42", "password": "secret"},
            headers={"User-Agent": CHROME_UA, "X-Forwarded-For": "203.0.113.50", "X-Session-Id": "s-1"},
        )

    assert response.status_code == 200
    assert response.json() == {"jwt": "token"}
    [record] = _all_records(app)
    assert record.activity_type is ActivityType.LOGIN
    assert record.actor_ref == "user-42"
    assert record.success is True
    assert record.session_id == "s-1"
    assert record.ip_address == "203.0.113.0"
    assert record.location == "Madrid, ES"
    assert record.device_info.os == "macOS"
    assert record.activity_data["action"] == "login"


def test_failed_login_is_recorded_as_failure(settings):
    app = _build_app(settings)

    with TestClient(app) as client:
        response = client.post("/api/auth/local", json={"identifier": "user-42", "password": "nope"})

    assert response.status_code == 401
    [record] = _all_records(app)
    assert record.actor_ref is None
    assert record.success is False
    assert record.error_message == "HTTP 401"


def test_authenticated_page_view(settings, customer_headers):
    app = _build_app(settings)

    with TestClient(app) as client:
        response = client.get("/api/products?page=2", headers=customer_headers)

    assert response.json() == [{"id": 1}]
    [record] = _all_records(app)
    assert record.activity_type is ActivityType.PAGE_VIEW
    assert record.actor_ref == "customer-9"
    assert record.activity_data["query_params"] == {"page": "2"}


def test_anonymous_page_views_and_excluded_paths_are_ignored(settings, customer_headers):
    app = _build_app(settings)

    with TestClient(app) as client:
        client.get("/api/products")
        client.get("/api/user-activities/ping", headers=customer_headers)
        client.get("/health")

    assert _all_records(app) == []


def test_tracking_can_be_disabled(settings):
    app = _build_app(settings.model_copy(update={"activity_tracking_enabled": False}))

    with TestClient(app) as client:
        client.post("/api/auth/local", json={"identifier": "user-42", "password": "secret"})

    assert _all_records(app) == []


@pytest.mark.anyio
async def test_handler_exception_is_recorded_and_propagated(settings):
    app = _build_app(settings)
    initialize_database(app.state.engine)
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)

    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        response = await client.post("/api/cart")
    await app.state.recorder.drain()

    assert response.status_code == 500
    [record] = _all_records(app)
    assert record.activity_type is ActivityType.PRODUCT_INTERACTION
    assert record.success is False
    assert record.error_message == "cart service down"


@pytest.mark.anyio
async def test_store_failure_never_reaches_the_client(settings, monkeypatch, caplog):
    app = _build_app(settings)
    initialize_database(app.state.engine)

    def explode(record):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(app.state.activity_repository, "create", explode)
    transport = httpx.ASGITransport(app=app)

    with caplog.at_level(logging.ERROR):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.post(
                "/api/auth/local", json={"identifier": "user-42", "password": "secret"}
            )
        await app.state.recorder.drain()

    assert response.status_code == 200
    assert response.json() == {"jwt": "token"}
    assert "disk on fire" in caplog.text
