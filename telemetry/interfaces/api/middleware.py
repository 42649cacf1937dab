"""HTTP middleware feeding inbound requests to the activity recorder."""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from telemetry.application.use_cases import ActivityRecorder
from telemetry.domain.entities import RequestContext
from telemetry.infrastructure.security import Actor

ACTOR_STATE_ATTRIBUTE = "activity_actor"

logger = logging.getLogger(__name__)


def build_request_context(
    request: Request, actor_resolver: Callable[[str | None], Actor | None]
) -> RequestContext:
    actor = actor_resolver(request.headers.get("authorization"))
    return RequestContext(
        method=request.method,
        path=request.url.path,
        headers={key.lower(): value for key, value in request.headers.items()},
        query_params=dict(request.query_params),
        actor_ref=actor.ref if actor is not None else None,
        client_address=getattr(request.state, "client_ip", None),
        socket_address=request.client.host if request.client else None,
    )


class ActivityTrackingMiddleware(BaseHTTPMiddleware):
    """Record a page view before and a completion record after each request.

    Recording never changes the response: every recorder call swallows its
    own failures and writes happen after the response is handed back.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        recorder: ActivityRecorder,
        actor_resolver: Callable[[str | None], Actor | None],
    ) -> None:
        super().__init__(app)
        self._recorder = recorder
        self._actor_resolver = actor_resolver

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self._recorder.enabled:
            return await call_next(request)

        try:
            tracking = self._recorder.begin(
                build_request_context(request, self._actor_resolver)
            )
        except Exception:
            logger.exception("Could not extract activity context for %s", request.url.path)
            return await call_next(request)
        self._recorder.record_page_view(tracking)
        try:
            response = await call_next(request)
        except Exception as exc:
            self._recorder.record_failure(
                tracking, exc, actor_ref=getattr(request.state, ACTOR_STATE_ATTRIBUTE, None)
            )
            raise
        self._recorder.record_completion(
            tracking,
            response.status_code,
            actor_ref=getattr(request.state, ACTOR_STATE_ATTRIBUTE, None),
        )
        return response


__all__ = [
    "ACTOR_STATE_ATTRIBUTE",
    "ActivityTrackingMiddleware",
    "build_request_context",
]
