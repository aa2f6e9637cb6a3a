# overlay_plane/schemas/network.py
"""
Network, hub and member record schemas
Returned by the storage layer so callers never hold live ORM rows
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from enum import Enum


class MemberType(str, Enum):
    """Connectivity policy of a member"""
    PEER = "peer"    # Full mesh with the hub and every other peer
    ROUTE = "route"  # Reaches hub and peers; never another route member


class NetworkRecord(BaseModel):
    """An isolated overlay address space"""
    id: str
    name: str
    cidr: str
    created_at: datetime

    model_config = ConfigDict(
        from_attributes=True,
        frozen=True,
        json_schema_extra={
            "example": {
                "id": "0b6f7a3e-2f4c-4d62-9a53-6f1f5f0c2a11",
                "name": "prodnet",
                "cidr": "10.0.0.0/24",
                "created_at": "2025-12-26T08:00:00Z"
            }
        }
    )


class HubRecord(BaseModel):
    """The single always-reachable rendezvous entity of a network"""
    id: str
    network_id: str
    name: str
    public_address: str
    port: int
    address: str
    private_key: str
    public_key: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)


class MemberRecord(BaseModel):
    """A peer- or route-type endpoint attached to a network"""
    id: str
    network_id: str
    name: str
    public_address: str = ""
    port: int
    address: str
    type: MemberType
    private_key: str
    public_key: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def is_peer(self) -> bool:
        """Check if member takes part in the full mesh"""
        return self.type == MemberType.PEER
