"""Parse raw client signatures into coarse device attributes."""

from __future__ import annotations

from typing import Final

from telemetry.domain.entities import DeviceInfo

# Order matters: Chromium-based browsers also advertise "Chrome" and
# "Safari", and Chrome advertises "Safari".
_BROWSER_RULES: Final[tuple[tuple[str, str], ...]] = (
    ("Edg/", "Edge"),
    ("OPR/", "Opera"),
    ("Chrome", "Chrome"),
    ("Firefox", "Firefox"),
    ("Safari", "Safari"),
)

_OS_RULES: Final[tuple[tuple[tuple[str, ...], str], ...]] = (
    (("iPhone", "iPad", "iOS"), "iOS"),
    (("Android",), "Android"),
    (("Windows",), "Windows"),
    (("Mac OS",), "macOS"),
    (("Linux",), "Linux"),
)

_DEVICE_RULES: Final[tuple[tuple[str, str], ...]] = (
    ("iPad", "Tablet"),
    ("Tablet", "Tablet"),
    ("iPhone", "Phone"),
    ("Mobile", "Phone"),
)

_MOBILE_TOKENS: Final[tuple[str, ...]] = ("Mobile", "Android", "iPhone")


def parse_user_agent(user_agent: str | None) -> DeviceInfo | None:
    """Return :class:`DeviceInfo` for ``user_agent``; unmatched fields stay ``None``."""

    if not user_agent:
        return None

    info = DeviceInfo()
    info.mobile = any(token in user_agent for token in _MOBILE_TOKENS)

    for token, browser in _BROWSER_RULES:
        if token in user_agent:
            info.browser = browser
            break

    for tokens, os_name in _OS_RULES:
        if any(token in user_agent for token in tokens):
            info.os = os_name
            break

    for token, device in _DEVICE_RULES:
        if token in user_agent:
            info.device = device
            break

    return info


__all__ = ["parse_user_agent"]
