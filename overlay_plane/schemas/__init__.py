# overlay_plane/schemas/__init__.py
"""
Pydantic schemas for the overlay control plane
Organized by domain: network records, pool snapshots, generated config
"""

from .network import (
    MemberType,
    NetworkRecord,
    HubRecord,
    MemberRecord,
)
from .pool import AddressPoolState, POOL_STATE_FORMAT
from .config import (
    PeerConfig,
    InterfaceConfig,
    WireGuardConfig,
    ConfigSnapshotRecord,
)

__all__ = [
    # Network
    "MemberType",
    "NetworkRecord",
    "HubRecord",
    "MemberRecord",
    # Pool
    "AddressPoolState",
    "POOL_STATE_FORMAT",
    # Config
    "PeerConfig",
    "InterfaceConfig",
    "WireGuardConfig",
    "ConfigSnapshotRecord",
]
