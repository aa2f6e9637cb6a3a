# overlay_plane/core/validation.py
"""
Input validation for networks, public addresses and ports
"""

import ipaddress
import re
from typing import Protocol, runtime_checkable

from overlay_plane.exceptions import ValidationError

NETWORK_NAME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9]*$')
LOOPBACK_ALIASES = frozenset({"localhost", "ip6-localhost", "ip6-loopback"})


@runtime_checkable
class NetworkValidator(Protocol):
    """Syntax checks used by the network manager; each raises ValidationError"""

    def validate_network_name(self, name: str) -> None: ...

    def validate_cidr(self, cidr: str) -> None: ...

    def validate_public_address(self, address: str) -> None: ...

    def validate_port(self, port: int) -> None: ...


class DefaultNetworkValidator:
    """
    Default validation rules

    - Network names: letter first, then letters and digits only
    - CIDR: any parseable network block
    - Public address: IP literal, or hostname without whitespace that
      contains a dot or is a loopback alias
    - Port: 1-65535
    """

    def validate_network_name(self, name: str) -> None:
        if not name:
            raise ValidationError("Network name cannot be empty")
        if not NETWORK_NAME_PATTERN.match(name):
            raise ValidationError(
                "Network name must start with a letter and contain only alphanumeric characters"
            )

    def validate_cidr(self, cidr: str) -> None:
        if not cidr or "/" not in cidr:
            raise ValidationError(f"Invalid CIDR notation: {cidr!r}")
        try:
            ipaddress.ip_network(cidr, strict=False)
        except ValueError as e:
            raise ValidationError(f"Invalid CIDR notation: {e}") from e

    def validate_public_address(self, address: str) -> None:
        if not address:
            raise ValidationError("Public address cannot be empty")

        try:
            ipaddress.ip_address(address)
            return
        except ValueError:
            pass

        if any(ch.isspace() for ch in address):
            raise ValidationError("Public address cannot contain whitespace")
        if "." not in address and address.lower() not in LOOPBACK_ALIASES:
            raise ValidationError("Public address must be a valid IP or domain name")

    def validate_port(self, port: int) -> None:
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValidationError(f"Port must be an integer, got {port!r}")
        if not 1 <= port <= 65535:
            raise ValidationError(f"Port must be between 1 and 65535, got {port}")


def format_endpoint(address: str, port: int) -> str:
    """Format endpoint as host:port, bracketing IPv6 literals"""
    try:
        if isinstance(ipaddress.ip_address(address), ipaddress.IPv6Address):
            return f"[{address}]:{port}"
    except ValueError:
        pass
    return f"{address}:{port}"
