"""Use cases for recording user activity observed on inbound requests."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import anyio

from telemetry.config import Settings
from telemetry.domain.entities import ActivityRecord, ActivityType, DeviceInfo, RequestContext
from telemetry.infrastructure.geolocation import StaticLocationResolver
from telemetry.infrastructure.repositories import ActivityRecordRepository
from telemetry.utils import anonymize_ip, utcnow
from telemetry.utils.user_agent import parse_user_agent

SESSION_HEADER = "x-session-id"
FORWARDED_FOR_HEADER = "x-forwarded-for"
REAL_IP_HEADER = "x-real-ip"
USER_AGENT_HEADER = "user-agent"
MAX_STORED_USER_AGENT_LENGTH = 1000

# Recording these paths would generate activity about activity.
ALWAYS_EXCLUDED_PREFIXES: tuple[str, ...] = (
    "/admin",
    "/api/user-activities",
    "/api/analytics",
)


@dataclass(frozen=True)
class ClassificationRule:
    """Map a ``(method, path prefix)`` pair onto an activity type."""

    methods: frozenset[str]
    prefix: str
    activity_type: ActivityType
    action: str | None = None

    def matches(self, method: str, path: str) -> bool:
        return method.upper() in self.methods and path.startswith(self.prefix)


def _rule(
    methods: Iterable[str], prefix: str, activity_type: ActivityType, action: str | None
) -> ClassificationRule:
    return ClassificationRule(frozenset(methods), prefix, activity_type, action)


# First match wins, so more specific prefixes come first.
CLASSIFICATION_RULES: tuple[ClassificationRule, ...] = (
    _rule({"POST"}, "/api/auth/local/register", ActivityType.ACCOUNT_CREATED, "register"),
    _rule({"POST"}, "/api/auth/local", ActivityType.LOGIN, "login"),
    _rule({"POST"}, "/api/auth/logout", ActivityType.LOGOUT, "logout"),
    _rule({"POST", "PUT"}, "/api/auth/change-password", ActivityType.PASSWORD_CHANGE, "change_password"),
    _rule({"PUT"}, "/api/users/me", ActivityType.PROFILE_UPDATE, "update_profile"),
    _rule({"PUT"}, "/api/user-preferences", ActivityType.PREFERENCE_CHANGE, "update_preferences"),
    _rule({"PUT"}, "/api/privacy-settings", ActivityType.PREFERENCE_CHANGE, "update_preferences"),
    _rule({"POST", "PUT", "DELETE"}, "/api/cart", ActivityType.PRODUCT_INTERACTION, "update_cart"),
)


def match_rule(
    method: str, path: str, rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES
) -> ClassificationRule | None:
    for rule in rules:
        if rule.matches(method, path):
            return rule
    return None


def classify_activity(
    method: str, path: str, rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES
) -> ActivityType:
    """Return the activity type for a request; unmatched requests are page views."""

    rule = match_rule(method, path, rules)
    return rule.activity_type if rule is not None else ActivityType.PAGE_VIEW


@dataclass(frozen=True)
class EndpointPolicy:
    """Allow/deny lists of path prefixes. The deny list is checked first."""

    trackable_prefixes: tuple[str, ...]
    excluded_prefixes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        merged = tuple(dict.fromkeys((*self.excluded_prefixes, *ALWAYS_EXCLUDED_PREFIXES)))
        object.__setattr__(self, "excluded_prefixes", merged)

    def is_excluded(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.excluded_prefixes)

    def should_track(self, path: str) -> bool:
        if self.is_excluded(path):
            return False
        return any(path.startswith(prefix) for prefix in self.trackable_prefixes)

    @classmethod
    def from_settings(cls, settings: Settings) -> "EndpointPolicy":
        return cls(
            trackable_prefixes=tuple(settings.trackable_endpoints),
            excluded_prefixes=tuple(settings.excluded_endpoints),
        )


@dataclass(frozen=True)
class RecordingOptions:
    enabled: bool = True
    anonymize_ip: bool = True
    track_location: bool = True
    track_device_info: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "RecordingOptions":
        return cls(
            enabled=settings.activity_tracking_enabled,
            anonymize_ip=settings.anonymize_ip,
            track_location=settings.track_location,
            track_device_info=settings.track_device_info,
        )


def resolve_client_address(context: RequestContext) -> str | None:
    """Explicit address, then forwarded-for, then real-ip, then the socket peer."""

    if context.client_address:
        return context.client_address
    forwarded = context.header(FORWARDED_FOR_HEADER)
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = context.header(REAL_IP_HEADER)
    if real_ip:
        return real_ip
    return context.socket_address or None


def generate_session_id() -> str:
    return str(uuid.uuid4())


@dataclass
class RequestTracking:
    """Per-request recording state shared by the before and after records."""

    context: RequestContext
    session_id: str
    started_at: float = field(default_factory=time.monotonic)
    last_task: asyncio.Task[None] | None = None
    resolved: dict[str, Any] | None = None


class ActivityRecorder:
    """Classify requests and persist activity records without blocking them.

    ``record`` is the single failure boundary: any error raised while
    composing or persisting a record is logged and swallowed so the request
    that triggered it is never affected.
    """

    def __init__(
        self,
        repository: ActivityRecordRepository,
        *,
        policy: EndpointPolicy,
        options: RecordingOptions | None = None,
        location_resolver: StaticLocationResolver | None = None,
        rules: Sequence[ClassificationRule] = CLASSIFICATION_RULES,
        clock: Callable[[], datetime] = utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._repository = repository
        self._policy = policy
        self._options = options or RecordingOptions()
        self._location_resolver = location_resolver or StaticLocationResolver(enabled=False)
        self._rules = tuple(rules)
        self._clock = clock
        self._logger = logger or logging.getLogger(__name__)
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def enabled(self) -> bool:
        return self._options.enabled

    @property
    def policy(self) -> EndpointPolicy:
        return self._policy

    def begin(self, context: RequestContext) -> RequestTracking:
        """Start tracking a request, reusing a client-supplied session id if present."""

        session_id = context.header(SESSION_HEADER) or generate_session_id()
        return RequestTracking(context=context, session_id=session_id)

    def should_record_page_view(self, tracking: RequestTracking) -> bool:
        context = tracking.context
        return (
            self.enabled
            and context.actor_ref is not None
            and context.method.upper() == "GET"
            and not context.path.startswith("/admin")
            and self._policy.should_track(context.path)
        )

    def should_record_completion(self, tracking: RequestTracking) -> bool:
        context = tracking.context
        if not self.enabled or not self._policy.should_track(context.path):
            return False
        if context.method.upper() != "GET":
            return True
        return match_rule(context.method, context.path, self._rules) is not None

    def record_page_view(self, tracking: RequestTracking) -> None:
        if not self.should_record_page_view(tracking):
            return
        context = tracking.context
        self.record(
            tracking,
            ActivityType.PAGE_VIEW,
            activity_data={
                "url": context.path,
                "method": context.method.upper(),
                "timestamp": self._clock().isoformat(),
                "query_params": dict(context.query_params),
            },
            success=True,
        )

    def record_completion(
        self, tracking: RequestTracking, status_code: int, *, actor_ref: str | None = None
    ) -> None:
        if not self.should_record_completion(tracking):
            return
        success = 200 <= status_code < 400
        self.record(
            tracking,
            classify_activity(tracking.context.method, tracking.context.path, self._rules),
            activity_data=self._build_activity_data(tracking.context),
            success=success,
            error_message=None if success else f"HTTP {status_code}",
            session_duration=self._elapsed_ms(tracking),
            actor_ref=actor_ref,
        )

    def record_failure(
        self, tracking: RequestTracking, error: BaseException, *, actor_ref: str | None = None
    ) -> None:
        if not self.should_record_completion(tracking):
            return
        self.record(
            tracking,
            classify_activity(tracking.context.method, tracking.context.path, self._rules),
            activity_data=self._build_activity_data(tracking.context),
            success=False,
            error_message=str(error) or error.__class__.__name__,
            session_duration=self._elapsed_ms(tracking),
            actor_ref=actor_ref,
        )

    def record(
        self,
        tracking: RequestTracking,
        activity_type: ActivityType,
        *,
        activity_data: dict[str, Any],
        success: bool,
        error_message: str | None = None,
        session_duration: int | None = None,
        actor_ref: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Compose an :class:`ActivityRecord` and hand it off for persistence."""

        try:
            resolved = self._resolve_context(tracking)
            created_at = self._clock()
            record = ActivityRecord(
                id=None,
                actor_ref=actor_ref or tracking.context.actor_ref,
                activity_type=ActivityType(activity_type),
                activity_data=dict(activity_data),
                session_id=tracking.session_id,
                success=success,
                created_at=created_at,
                ip_address=resolved["ip_address"],
                user_agent=resolved["user_agent"],
                location=resolved["location"],
                device_info=resolved["device_info"],
                session_duration=session_duration,
                error_message=None if success else error_message,
                metadata={
                    **(metadata or {}),
                    "timestamp": created_at.isoformat(),
                    "server_time": int(time.time() * 1000),
                },
            )
            self._dispatch(tracking, record)
        except Exception:
            self._logger.exception(
                "Failed to record %s activity for %s %s",
                activity_type,
                tracking.context.method,
                tracking.context.path,
            )

    async def drain(self) -> None:
        """Wait until every scheduled write has finished."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _dispatch(self, tracking: RequestTracking, record: ActivityRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._persist(record)
            return
        task = loop.create_task(self._persist_later(record, tracking.last_task))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        tracking.last_task = task

    async def _persist_later(
        self, record: ActivityRecord, previous: asyncio.Task[None] | None
    ) -> None:
        try:
            # Keeps the before and after records of one request in order.
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            await anyio.to_thread.run_sync(self._persist, record)
        except Exception:
            self._logger.exception("Failed to persist %s activity", record.activity_type.value)

    def _persist(self, record: ActivityRecord) -> None:
        try:
            result = self._repository.create(record)
        except Exception:
            self._logger.exception("Failed to persist %s activity", record.activity_type.value)
            return
        if not result.ok:
            self._logger.error(
                "Activity record for session %s was not stored: %s",
                record.session_id,
                result.error,
            )

    def _resolve_context(self, tracking: RequestTracking) -> dict[str, Any]:
        if tracking.resolved is not None:
            return tracking.resolved

        context = tracking.context
        raw_address = resolve_client_address(context)
        user_agent = context.header(USER_AGENT_HEADER)
        device_info: DeviceInfo | None = None
        if self._options.track_device_info:
            device_info = parse_user_agent(user_agent)
        location = None
        if self._options.track_location:
            location = self._location_resolver.resolve(raw_address)

        tracking.resolved = {
            "ip_address": anonymize_ip(raw_address) if self._options.anonymize_ip else raw_address,
            "user_agent": user_agent[:MAX_STORED_USER_AGENT_LENGTH] if user_agent else None,
            "location": location,
            "device_info": device_info,
        }
        return tracking.resolved

    def _build_activity_data(self, context: RequestContext) -> dict[str, Any]:
        data: dict[str, Any] = {
            "url": context.path,
            "method": context.method.upper(),
            "timestamp": self._clock().isoformat(),
        }
        rule = match_rule(context.method, context.path, self._rules)
        if rule is not None:
            data["endpoint"] = context.path
            if rule.action is not None:
                data["action"] = rule.action
        return data

    @staticmethod
    def _elapsed_ms(tracking: RequestTracking) -> int:
        return int((time.monotonic() - tracking.started_at) * 1000)


__all__ = [
    "ALWAYS_EXCLUDED_PREFIXES",
    "CLASSIFICATION_RULES",
    "ActivityRecorder",
    "ClassificationRule",
    "EndpointPolicy",
    "RecordingOptions",
    "RequestTracking",
    "classify_activity",
    "generate_session_id",
    "match_rule",
    "resolve_client_address",
]
