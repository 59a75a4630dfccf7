"""Device identifier validation.

Identifiers end up as argv elements, SQL bind parameters and lines in the
CoovaChilli users file, so only canonical MAC and IP literals are accepted.
"""

import ipaddress
import re

from hotspot.exceptions import InvalidRequestError
from hotspot.models.domain import DeviceIdentifier

_MAC_RE = re.compile(r"^[0-9a-f]{2}([:-])[0-9a-f]{2}(\1[0-9a-f]{2}){4}$")


def normalize_mac(mac: str) -> str:
    """Return mac as lower-case colon-separated hex, or raise InvalidRequestError."""
    candidate = mac.strip().lower()
    if not _MAC_RE.match(candidate):
        raise InvalidRequestError(f"malformed MAC address: {mac!r}")
    return candidate.replace("-", ":")


def normalize_ip(ip: str) -> str:
    """Return the compressed textual form of ip, or raise InvalidRequestError."""
    try:
        return str(ipaddress.ip_address(ip.strip()))
    except ValueError as exc:
        raise InvalidRequestError(f"malformed IP address: {ip!r}") from exc


def normalize_device(mac: str | None, ip: str | None) -> tuple[str | None, str | None]:
    """Validate an optional MAC/IP pair. At least one must be present."""
    if not mac and not ip:
        raise InvalidRequestError("a device MAC or IP address is required")
    return (normalize_mac(mac) if mac else None, normalize_ip(ip) if ip else None)


def device_identifier(mac: str | None, ip: str | None) -> DeviceIdentifier:
    """The identifier enforcers key on: the MAC when known, else the IP."""
    norm_mac, norm_ip = normalize_device(mac, ip)
    if norm_mac:
        return DeviceIdentifier(kind="mac", value=norm_mac)
    if norm_ip:
        return DeviceIdentifier(kind="ip", value=norm_ip)
    raise InvalidRequestError("a device MAC or IP address is required")
