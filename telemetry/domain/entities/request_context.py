"""Transport-neutral description of an inbound request."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(frozen=True)
class RequestContext:
    """What the recorder needs to know about a request.

    ``headers`` keys are expected in lower case. ``client_address`` is an
    address explicitly supplied by a trusted upstream, ``socket_address`` is
    the raw peer address of the connection.
    """

    method: str
    path: str
    headers: Mapping[str, str] = field(default_factory=dict)
    query_params: Mapping[str, Any] = field(default_factory=dict)
    actor_ref: str | None = None
    client_address: str | None = None
    socket_address: str | None = None

    def header(self, name: str) -> str | None:
        value = self.headers.get(name.lower())
        if value is None:
            return None
        value = value.strip()
        return value or None


__all__ = ["RequestContext"]
