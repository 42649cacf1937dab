"""Offline resolution of coarse locations from network addresses."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Mapping

logger = logging.getLogger(__name__)

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


class StaticLocationResolver:
    """Look addresses up in a static CIDR table; never touches the network.

    The most specific matching network wins. Invalid table entries are
    skipped with a warning.
    """

    def __init__(self, table: Mapping[str, str] | None = None, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self._networks: list[tuple[IPNetwork, str]] = []
        for cidr, location in (table or {}).items():
            try:
                network = ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                logger.warning("Ignoring invalid location table entry '%s'", cidr)
                continue
            self._networks.append((network, location))
        self._networks.sort(key=lambda item: item[0].prefixlen, reverse=True)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def resolve(self, address: str | None) -> str | None:
        if not self._enabled or not address:
            return None
        try:
            parsed = ipaddress.ip_address(address.strip())
        except ValueError:
            return None
        for network, location in self._networks:
            if parsed.version == network.version and parsed in network:
                return location
        return None


__all__ = ["StaticLocationResolver"]
