"""
Network identity validation.

Decides whether the client is attached to the school network, first from the
WiFi SSID and, when browsers cannot read it, from the client IP address.
"""

import logging
from ipaddress import ip_address, ip_network
from typing import Optional, Iterable

from ..schemas import LocationPolicy
from .results import ViolationCode

logger = logging.getLogger(__name__)

# SSID values reported by clients that could not actually read the SSID
PLACEHOLDER_SSIDS = frozenset({"", "unknown", "wifi-connected", "local-network", "n/a", "none"})

CELLULAR_CONNECTION_TYPES = frozenset({"cellular", "2g", "3g", "4g", "5g"})

PERMISSIVE_RANGE = "0.0.0.0/0"


def normalize_ssid(ssid: Optional[str]) -> str:
    return (ssid or "").strip().lower()


def is_placeholder_ssid(ssid: Optional[str]) -> bool:
    return normalize_ssid(ssid) in PLACEHOLDER_SSIDS


def ip_in_range(ip: str, allowed_range: str) -> bool:
    """
    Match an IP against one allow-list entry.

    Entries are either CIDR blocks ("192.168.1.0/24") or literal prefixes
    ("192.168."). A full address without a prefix length must match exactly.
    """
    entry = allowed_range.strip()
    if not entry:
        return False

    try:
        address = ip_address(ip.strip())
    except ValueError:
        return False

    if "/" in entry:
        try:
            network = ip_network(entry, strict=False)
        except ValueError:
            logger.warning(f"[SECURITY] Ignoring malformed IP range '{entry}'")
            return False
        return address.version == network.version and address in network

    try:
        return address == ip_address(entry)
    except ValueError:
        return str(address).startswith(entry)


class NetworkCheck:
    """Outcome of the network identity check."""

    def __init__(
        self,
        ok: bool,
        method: str,
        reason: Optional[str] = None,
        violation: Optional[ViolationCode] = None,
        matched_range: Optional[str] = None
    ):
        self.ok = ok
        self.method = method
        self.reason = reason
        self.violation = violation
        self.matched_range = matched_range

    @property
    def permissive(self) -> bool:
        return self.matched_range == PERMISSIVE_RANGE

    def __repr__(self):
        return f"<NetworkCheck(ok={self.ok}, method={self.method}, violation={self.violation})>"


class NetworkIdentityValidator:
    """
    First match wins:

    1. A real SSID is authoritative: accepted only if allow-listed, and a
       mismatch is never rescued by the IP tier.
    2. Otherwise a non-cellular IP address must fall inside an allowed range.
    3. Otherwise the client is not on the school network.
    """

    def validate(
        self,
        ssid: Optional[str],
        ip: Optional[str],
        connection_type: Optional[str],
        policy: LocationPolicy
    ) -> NetworkCheck:
        if not is_placeholder_ssid(ssid):
            return self._check_ssid(ssid, policy.allowed_ssids)

        cellular = (connection_type or "").strip().lower() in CELLULAR_CONNECTION_TYPES
        if ip and ip.strip() and not cellular:
            return self._check_ip(ip, policy.allowed_ip_ranges)

        reason = "Cellular connection detected" if cellular else "No WiFi or IP information available"
        logger.info(f"[SECURITY] Network rejected: {reason}")
        return NetworkCheck(
            ok=False,
            method="none",
            reason=f"Not on school network. {reason}",
            violation=ViolationCode.NOT_ON_SCHOOL_NETWORK
        )

    def _check_ssid(self, ssid: str, allowed_ssids: Iterable[str]) -> NetworkCheck:
        allowed = {normalize_ssid(s) for s in allowed_ssids}
        if normalize_ssid(ssid) in allowed:
            return NetworkCheck(ok=True, method="ssid")

        logger.info(f"[SECURITY] SSID '{ssid}' not in allow-list")
        return NetworkCheck(
            ok=False,
            method="ssid",
            reason=f"WiFi '{ssid.strip()}' is not an allowed school network",
            violation=ViolationCode.WIFI_NOT_ALLOWED
        )

    def _check_ip(self, ip: str, allowed_ranges: Iterable[str]) -> NetworkCheck:
        for allowed_range in allowed_ranges:
            if ip_in_range(ip, allowed_range):
                return NetworkCheck(ok=True, method="ip", matched_range=allowed_range.strip())

        logger.info(f"[SECURITY] IP {ip} not in any allowed range")
        return NetworkCheck(
            ok=False,
            method="ip",
            reason=f"IP address {ip.strip()} is not on the school network",
            violation=ViolationCode.IP_NOT_IN_WHITELIST
        )
