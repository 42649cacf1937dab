import logging
from datetime import datetime, timezone

import pytest

from telemetry.application.use_cases.activity_recording import (
    CLASSIFICATION_RULES,
    ActivityRecorder,
    ClassificationRule,
    EndpointPolicy,
    RecordingOptions,
    classify_activity,
    resolve_client_address,
)
from telemetry.config import DEFAULT_EXCLUDED_ENDPOINTS, DEFAULT_TRACKABLE_ENDPOINTS
from telemetry.domain.entities import ActivityType, RequestContext
from telemetry.infrastructure.geolocation import StaticLocationResolver

FIXED_NOW = datetime(2023, 1, 15, 10, 0, tzinfo=timezone.utc)
CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class _RaisingRepository:
    def __init__(self):
        self.calls = 0

    def create(self, record):
        self.calls += 1
        raise RuntimeError("store exploded")


def _policy() -> EndpointPolicy:
    return EndpointPolicy(
        trackable_prefixes=DEFAULT_TRACKABLE_ENDPOINTS,
        excluded_prefixes=DEFAULT_EXCLUDED_ENDPOINTS,
    )


def _build_recorder(repository, **options) -> ActivityRecorder:
    return ActivityRecorder(
        repository,
        policy=_policy(),
        options=RecordingOptions(**options),
        location_resolver=StaticLocationResolver({"203.0.113.0/24": "Madrid, ES"}),
        clock=lambda: FIXED_NOW,
    )


def _context(method="POST", path="/api/auth/local", *, headers=None, **kwargs) -> RequestContext:
    return RequestContext(
        method=method,
        path=path,
        headers={"user-agent": CHROME_UA, **(headers or {})},
        socket_address="203.0.113.77",
        **kwargs,
    )


@pytest.mark.parametrize(
    ("method", "path", "expected"),
    [
        ("POST", "/api/auth/local/register", ActivityType.ACCOUNT_CREATED),
        ("POST", "/api/auth/local", ActivityType.LOGIN),
        ("POST", "/api/auth/logout", ActivityType.LOGOUT),
        ("POST", "/api/auth/change-password", ActivityType.PASSWORD_CHANGE),
        ("PUT", "/api/users/me", ActivityType.PROFILE_UPDATE),
        ("GET", "/api/users/me", ActivityType.PAGE_VIEW),
        ("PUT", "/api/privacy-settings", ActivityType.PREFERENCE_CHANGE),
        ("DELETE", "/api/cart/items/3", ActivityType.PRODUCT_INTERACTION),
        ("GET", "/api/products", ActivityType.PAGE_VIEW),
    ],
)
def test_classify_activity(method, path, expected):
    assert classify_activity(method, path) is expected


def test_deny_list_wins_over_allow_list():
    policy = EndpointPolicy(
        trackable_prefixes=("/api/products",),
        excluded_prefixes=("/api/products/internal",),
    )

    assert policy.should_track("/api/products/1")
    assert not policy.should_track("/api/products/internal/stock")
    assert not policy.should_track("/admin/products")
    assert not EndpointPolicy(trackable_prefixes=("/api",)).should_track("/api/analytics/x")


def test_client_address_resolution_order():
    headers = {"x-forwarded-for": "198.51.100.1, 10.0.0.1", "x-real-ip": "198.51.100.2"}

    assert resolve_client_address(_context(headers=headers, client_address="198.51.100.9")) == "198.51.100.9"
    assert resolve_client_address(_context(headers=headers)) == "198.51.100.1"
    assert resolve_client_address(_context(headers={"x-real-ip": "198.51.100.2"})) == "198.51.100.2"
    assert resolve_client_address(_context()) == "203.0.113.77"


def test_begin_reuses_client_session_id(repository):
    recorder = _build_recorder(repository)

    reused = recorder.begin(_context(headers={"x-session-id": "abc-123"}))
    generated = recorder.begin(_context())

    assert reused.session_id == "abc-123"
    assert generated.session_id and generated.session_id != "abc-123"


def test_successful_login_completion_is_recorded(repository):
    recorder = _build_recorder(repository)
    tracking = recorder.begin(_context())

    recorder.record_completion(tracking, 200, actor_ref="user-7")

    [record] = repository.find_many().unwrap()
    assert record.activity_type is ActivityType.LOGIN
    assert record.actor_ref == "user-7"
    assert record.success is True
    assert record.error_message is None
    assert record.ip_address == "203.0.113.0"
    assert record.location == "Madrid, ES"
    assert record.device_info.browser == "Chrome"
    assert record.activity_data["action"] == "login"
    assert record.activity_data["endpoint"] == "/api/auth/local"
    assert record.session_duration >= 0
    assert record.metadata["timestamp"] == FIXED_NOW.isoformat()
    assert "server_time" in record.metadata


def test_failed_completion_carries_status_message(repository):
    recorder = _build_recorder(repository, anonymize_ip=False)
    tracking = recorder.begin(_context())

    recorder.record_completion(tracking, 401)

    [record] = repository.find_many().unwrap()
    assert record.success is False
    assert record.error_message == "HTTP 401"
    assert record.ip_address == "203.0.113.77"


def test_page_view_requires_authenticated_get(repository):
    recorder = _build_recorder(repository)

    anonymous = recorder.begin(_context("GET", "/api/products"))
    authenticated = recorder.begin(
        _context("GET", "/api/products", actor_ref="user-1", query_params={"page": "2"})
    )
    recorder.record_page_view(anonymous)
    recorder.record_page_view(authenticated)

    [record] = repository.find_many().unwrap()
    assert record.activity_type is ActivityType.PAGE_VIEW
    assert record.actor_ref == "user-1"
    assert record.activity_data["query_params"] == {"page": "2"}


def test_untracked_and_excluded_paths_are_not_recorded(repository):
    recorder = _build_recorder(repository)

    for path in ("/api/unknown", "/api/user-activities", "/admin/users"):
        tracking = recorder.begin(_context("POST", path, actor_ref="user-1"))
        recorder.record_page_view(tracking)
        recorder.record_completion(tracking, 200)

    assert repository.count().unwrap() == 0


def test_disabled_recorder_records_nothing(repository):
    recorder = _build_recorder(repository, enabled=False)

    recorder.record_completion(recorder.begin(_context()), 200)

    assert repository.count().unwrap() == 0


def test_persistence_failure_is_logged_not_raised(caplog):
    store = _RaisingRepository()
    recorder = _build_recorder(store)
    tracking = recorder.begin(_context())

    with caplog.at_level(logging.ERROR):
        recorder.record_completion(tracking, 200)

    assert store.calls == 1
    assert "Failed to persist login activity" in caplog.text


@pytest.mark.anyio
async def test_writes_are_deferred_and_ordered(repository):
    recorder = ActivityRecorder(
        repository,
        policy=_policy(),
        rules=(
            *CLASSIFICATION_RULES,
            ClassificationRule(
                frozenset({"GET"}), "/api/products", ActivityType.PRODUCT_INTERACTION, "view_product"
            ),
        ),
    )
    tracking = recorder.begin(_context("GET", "/api/products/42", actor_ref="user-1"))

    recorder.record_page_view(tracking)
    recorder.record_completion(tracking, 200)
    await recorder.drain()

    records = repository.find_many(sort=(("id", "asc"),)).unwrap()
    assert [record.activity_type for record in records] == [
        ActivityType.PAGE_VIEW,
        ActivityType.PRODUCT_INTERACTION,
    ]
    assert records[1].activity_data["action"] == "view_product"
    assert records[0].session_id == records[1].session_id


@pytest.mark.anyio
async def test_deferred_failure_does_not_escape(caplog):
    store = _RaisingRepository()
    recorder = _build_recorder(store)

    with caplog.at_level(logging.ERROR):
        recorder.record_completion(recorder.begin(_context()), 200)
        await recorder.drain()

    assert store.calls == 1
    assert "store exploded" in caplog.text
