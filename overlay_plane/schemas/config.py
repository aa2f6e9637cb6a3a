# overlay_plane/schemas/config.py
"""
Configuration schemas for generated WireGuard documents
"""

from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict
from datetime import datetime


class PeerConfig(BaseModel):
    """WireGuard peer configuration"""
    public_key: str = Field(..., description="Peer's WireGuard public key")
    allowed_ips: str = Field(..., description="Allowed IP ranges for this peer", examples=["10.0.0.2/32"])
    endpoint: Optional[str] = Field(None, description="Peer endpoint (host:port)", examples=["203.0.113.10:51820"])

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "public_key": "xYz123AbC456DeF789GhI012JkL345MnO678PqR901=",
                "allowed_ips": "10.0.0.2/32",
                "endpoint": "203.0.113.10:51820"
            }
        }
    )


class InterfaceConfig(BaseModel):
    """WireGuard interface configuration"""
    private_key: str = Field(..., description="Interface private key (Base64)")
    address: str = Field(..., description="Interface address as a host-only mask", examples=["10.0.0.2/32"])
    listen_port: int = Field(..., ge=1, le=65535, description="Listen port")

    # Post up/down directives (hub only)
    post_up: Optional[str] = Field(None, description="Command to run after interface up")
    post_down: Optional[str] = Field(None, description="Command to run after interface down")

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "private_key": "aB3dE5fG7hI9jK1lM3nO5pQ7rS9tU1vW3xY5zA7bC9dE=",
                "address": "10.0.0.1/32",
                "listen_port": 51820,
                "post_up": "sysctl -w net.ipv4.ip_forward=1",
                "post_down": "sysctl -w net.ipv4.ip_forward=0"
            }
        }
    )


class WireGuardConfig(BaseModel):
    """
    Complete WireGuard configuration for one entity
    Rendered to wg0.conf text by the config generator
    """
    interface: InterfaceConfig
    peers: List[PeerConfig] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


class ConfigSnapshotRecord(BaseModel):
    """
    One hashed, versioned configuration set for a network
    """
    id: str
    network_id: str
    version: int = Field(..., ge=1)
    content_hash: str = Field(..., description="SHA-256 hex digest of all documents")
    configs: Dict[str, str] = Field(..., description="Entity name -> WireGuard config text")
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)
