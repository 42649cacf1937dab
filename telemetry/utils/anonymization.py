"""One-way transformations that strip identifying detail from telemetry fields."""

from __future__ import annotations

import re
from typing import Final

USER_AGENT_VERSION_PLACEHOLDER: Final[str] = "X.X"
USER_AGENT_MAX_LENGTH: Final[int] = 50
TRUNCATION_MARKER: Final[str] = "..."

_VERSION_PATTERN: Final[re.Pattern[str]] = re.compile(r"\d+\.\d+[\d.]*")


def anonymize_ipv4(address: str | None) -> str | None:
    """Zero the last octet: ``192.168.1.100`` becomes ``192.168.1.0``."""

    if not address:
        return None
    parts = address.split(".")
    if len(parts) != 4:
        return address
    return f"{parts[0]}.{parts[1]}.{parts[2]}.0"


def anonymize_ipv6(address: str | None) -> str | None:
    """Keep the first four groups (the /64 network prefix) and drop the rest."""

    if not address:
        return None
    parts = address.split(":")
    if len(parts) < 4:
        return address
    return ":".join(parts[:4]) + "::"


def anonymize_ip(address: str | None) -> str | None:
    """Dispatch to the IPv4 or IPv6 variant; unrecognised input is returned as-is."""

    if not address:
        return None
    if "." in address:
        return anonymize_ipv4(address)
    if ":" in address:
        return anonymize_ipv6(address)
    return address


def anonymize_user_agent(user_agent: str | None) -> str | None:
    """Replace version tokens with a placeholder and cap the length."""

    if not user_agent:
        return None

    anonymized = _VERSION_PATTERN.sub(USER_AGENT_VERSION_PLACEHOLDER, user_agent)
    if len(anonymized) > USER_AGENT_MAX_LENGTH:
        anonymized = anonymized[:USER_AGENT_MAX_LENGTH] + TRUNCATION_MARKER
    return anonymized


__all__ = [
    "USER_AGENT_MAX_LENGTH",
    "USER_AGENT_VERSION_PLACEHOLDER",
    "anonymize_ip",
    "anonymize_ipv4",
    "anonymize_ipv6",
    "anonymize_user_agent",
]
