import logging

from telemetry.domain.entities import DeviceInfo
from telemetry.infrastructure.geolocation import StaticLocationResolver
from telemetry.utils.user_agent import parse_user_agent

IPHONE_SAFARI = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
WINDOWS_EDGE = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.2210.61"
)
ANDROID_CHROME = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.43 Mobile Safari/537.36"
)


def test_parse_user_agent_detects_iphone():
    assert parse_user_agent(IPHONE_SAFARI) == DeviceInfo(
        browser="Safari", os="iOS", device="Phone", mobile=True
    )


def test_parse_user_agent_prefers_edge_over_chrome():
    info = parse_user_agent(WINDOWS_EDGE)

    assert info.browser == "Edge"
    assert info.os == "Windows"
    assert info.device is None
    assert info.mobile is False


def test_parse_user_agent_android_is_not_reported_as_linux():
    info = parse_user_agent(ANDROID_CHROME)

    assert info.os == "Android"
    assert info.browser == "Chrome"
    assert info.mobile is True


def test_parse_user_agent_unknown_signature_keeps_fields_empty():
    assert parse_user_agent("custom-client") == DeviceInfo()
    assert parse_user_agent(None) is None


def test_location_resolver_prefers_most_specific_network():
    resolver = StaticLocationResolver(
        {"203.0.0.0/8": "Somewhere", "203.0.113.0/24": "Madrid, ES", "2001:db8::/32": "Lab"}
    )

    assert resolver.resolve("203.0.113.9") == "Madrid, ES"
    assert resolver.resolve("203.1.1.1") == "Somewhere"
    assert resolver.resolve("2001:db8::1") == "Lab"
    assert resolver.resolve("198.51.100.1") is None


def test_location_resolver_ignores_bad_input(caplog):
    with caplog.at_level(logging.WARNING):
        resolver = StaticLocationResolver({"not-a-network": "Nowhere"})

    assert "not-a-network" in caplog.text
    assert resolver.resolve("garbage") is None
    assert resolver.resolve(None) is None


def test_disabled_location_resolver_returns_nothing():
    resolver = StaticLocationResolver({"203.0.113.0/24": "Madrid, ES"}, enabled=False)

    assert resolver.resolve("203.0.113.9") is None
