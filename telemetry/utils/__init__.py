"""Utility helpers for reusable functionality."""

from .anonymization import (
    anonymize_ip,
    anonymize_ipv4,
    anonymize_ipv6,
    anonymize_user_agent,
)
from .datetime import (
    ensure_utc,
    from_storage_datetime,
    parse_timestamp,
    resolve_timezone,
    to_storage_datetime,
    utcnow,
)

__all__ = [
    "anonymize_ip",
    "anonymize_ipv4",
    "anonymize_ipv6",
    "anonymize_user_agent",
    "ensure_utc",
    "from_storage_datetime",
    "parse_timestamp",
    "resolve_timezone",
    "to_storage_datetime",
    "utcnow",
]
