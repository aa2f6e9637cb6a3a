# overlay_plane/schemas/pool.py
"""
Persisted address pool snapshot
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import List

POOL_STATE_FORMAT = 1


class AddressPoolState(BaseModel):
    """
    Snapshot of an address pool, stored as JSON per network

    The hub address is kept separately and never appears in `allocated`;
    `recycled` preserves FIFO order.
    """
    format_version: int = Field(default=POOL_STATE_FORMAT, description="Snapshot schema version")
    network_cidr: str = Field(..., examples=["10.0.0.0/24"])
    hub_address: str = Field(..., examples=["10.0.0.1"])
    allocated: List[str] = Field(default_factory=list)
    recycled: List[str] = Field(default_factory=list)
    next_index: int = Field(default=1, ge=1)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "format_version": 1,
                "network_cidr": "10.0.0.0/24",
                "hub_address": "10.0.0.1",
                "allocated": ["10.0.0.3"],
                "recycled": ["10.0.0.2"],
                "next_index": 3
            }
        }
    )
