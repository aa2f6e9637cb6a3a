# overlay_plane/database/models.py
"""
SQLAlchemy Database Models for the Overlay Control Plane

Every entity kind has a primary table keyed by id and a separate
name-index table; the storage manager keeps both in step inside one
transaction.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text,
    Index
)
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import json

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite stores no tz info)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Network(Base):
    """
    Network table - one isolated overlay address space
    """
    __tablename__ = "networks"

    id = Column(String(36), primary_key=True,
                comment="UUID4 string")
    name = Column(String(64), nullable=False,
                  comment="Globally unique name (indexed in network_names)")
    cidr = Column(String(18), nullable=False,
                  comment="Normalized IPv4 network (e.g., 10.0.0.0/24)")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Network(id={self.id}, name={self.name}, cidr={self.cidr})>"


class NetworkName(Base):
    """Name index: network name -> network id"""
    __tablename__ = "network_names"

    name = Column(String(64), primary_key=True)
    network_id = Column(String(36), nullable=False, index=True)


class Hub(Base):
    """
    Hub table - the rendezvous server of a network (at most one per network)
    """
    __tablename__ = "hubs"

    id = Column(String(36), primary_key=True)
    network_id = Column(String(36), nullable=False, unique=True, index=True,
                        comment="Owning network; one hub per network")
    name = Column(String(64), nullable=False)

    # Reachability
    public_address = Column(String(255), nullable=False,
                            comment="Public IP or hostname")
    port = Column(Integer, default=51820, nullable=False,
                  comment="WireGuard listen port")

    # Overlay
    address = Column(String(15), nullable=False,
                     comment="Overlay address, always the first usable address")

    # WireGuard Keys
    private_key = Column(String(64), nullable=False)
    public_key = Column(String(64), nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Hub(id={self.id}, network_id={self.network_id}, name={self.name})>"


class HubName(Base):
    """Name index: (network id, hub name) -> hub id"""
    __tablename__ = "hub_names"

    network_id = Column(String(36), primary_key=True)
    name = Column(String(64), primary_key=True)
    hub_id = Column(String(36), nullable=False)


class Member(Base):
    """
    Member table - peer or route endpoints of a network
    """
    __tablename__ = "members"

    id = Column(String(36), primary_key=True)
    network_id = Column(String(36), nullable=False, index=True)
    name = Column(String(64), nullable=False,
                  comment="Unique within the network only")

    # Reachability
    public_address = Column(String(255), default="", nullable=False,
                            comment="Public IP or hostname; required for peer type")
    port = Column(Integer, default=51820, nullable=False)
    type = Column(String(10), default="peer", nullable=False,
                  comment="Member type: peer, route")

    # Overlay
    address = Column(String(15), nullable=False)

    # WireGuard Keys
    private_key = Column(String(64), nullable=False)
    public_key = Column(String(64), nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_members_network_address', 'network_id', 'address'),
    )

    def __repr__(self):
        return f"<Member(id={self.id}, name={self.name}, type={self.type}, address={self.address})>"


class MemberName(Base):
    """Name index: (network id, member name) -> member id"""
    __tablename__ = "member_names"

    network_id = Column(String(36), primary_key=True)
    name = Column(String(64), primary_key=True)
    member_id = Column(String(36), nullable=False)


class ConfigSnapshot(Base):
    """
    Config Snapshot table - append-only generated config versions
    """
    __tablename__ = "config_snapshots"

    id = Column(String(36), primary_key=True)
    network_id = Column(String(36), nullable=False, index=True)
    version = Column(Integer, nullable=False,
                     comment="1, 2, 3, ... per network, gap-free")
    content_hash = Column(String(64), nullable=False,
                          comment="SHA-256 hex digest of all documents")
    configs_json = Column(Text, nullable=False,
                          comment="JSON object: entity name -> config text")
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_config_snapshots_network_version', 'network_id', 'version', unique=True),
    )

    @property
    def configs(self) -> dict:
        return json.loads(self.configs_json)

    def __repr__(self):
        return f"<ConfigSnapshot(network_id={self.network_id}, version={self.version})>"


class AddressPoolSnapshot(Base):
    """
    Address pool state per network, stored as AddressPoolState JSON
    """
    __tablename__ = "address_pools"

    network_id = Column(String(36), primary_key=True)
    state_json = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
