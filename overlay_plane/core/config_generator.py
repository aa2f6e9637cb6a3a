# overlay_plane/core/config_generator.py
"""
Config Generator - WireGuard documents for every entity of a network
Computes per-entity peer sets and versions the result by content hash
"""

from typing import Dict, List, Optional, Tuple
import hashlib
import logging

from overlay_plane.config import settings
from overlay_plane.database.storage import StorageManager
from overlay_plane.exceptions import NotFoundError
from overlay_plane.schemas import (
    NetworkRecord,
    HubRecord,
    MemberRecord,
    ConfigSnapshotRecord,
    PeerConfig,
    InterfaceConfig,
    WireGuardConfig,
)
from .validation import format_endpoint

logger = logging.getLogger(__name__)


class ConfigGenerator:
    """
    Config Generator for hub-and-spoke / mesh overlays

    Topology:
    - Hub sees every member; endpoints only for peer members
    - Peer members see the hub and every other peer member
    - Route members see the hub and every peer member, never another
      route member (route-to-route traffic goes through the hub)

    Identical stored state always renders byte-identical documents.
    """

    def __init__(
        self,
        storage: StorageManager,
        post_up: Optional[str] = None,
        post_down: Optional[str] = None
    ):
        self.storage = storage
        self.post_up = post_up or settings.HUB_POST_UP
        self.post_down = post_down or settings.HUB_POST_DOWN

    # ========== Document Building ==========

    def build_hub_config(self, hub: HubRecord, members: List[MemberRecord]) -> WireGuardConfig:
        peers = []
        for member in members:
            endpoint = None
            # Route members dial the hub, never the other way round
            if member.is_peer and member.public_address:
                endpoint = format_endpoint(member.public_address, member.port)
            peers.append(PeerConfig(
                public_key=member.public_key,
                allowed_ips=f"{member.address}/32",
                endpoint=endpoint
            ))

        return WireGuardConfig(
            interface=InterfaceConfig(
                private_key=hub.private_key,
                address=f"{hub.address}/32",
                listen_port=hub.port,
                post_up=self.post_up,
                post_down=self.post_down
            ),
            peers=peers
        )

    def build_member_config(
        self,
        network: NetworkRecord,
        hub: HubRecord,
        member: MemberRecord,
        members: List[MemberRecord]
    ) -> WireGuardConfig:
        peers = [PeerConfig(
            public_key=hub.public_key,
            allowed_ips=network.cidr,
            endpoint=format_endpoint(hub.public_address, hub.port) if hub.public_address else None
        )]

        for other in members:
            if other.id == member.id or not other.is_peer:
                continue
            peers.append(PeerConfig(
                public_key=other.public_key,
                allowed_ips=f"{other.address}/32",
                endpoint=format_endpoint(other.public_address, other.port) if other.public_address else None
            ))

        return WireGuardConfig(
            interface=InterfaceConfig(
                private_key=member.private_key,
                address=f"{member.address}/32",
                listen_port=member.port
            ),
            peers=peers
        )

    @staticmethod
    def render(config: WireGuardConfig) -> str:
        """Render a document as wg-quick INI text"""
        lines = [
            "[Interface]",
            f"PrivateKey = {config.interface.private_key}",
            f"Address = {config.interface.address}",
            f"ListenPort = {config.interface.listen_port}",
        ]
        if config.interface.post_up:
            lines.append(f"PostUp = {config.interface.post_up}")
        if config.interface.post_down:
            lines.append(f"PostDown = {config.interface.post_down}")

        for peer in config.peers:
            lines.append("")
            lines.append("[Peer]")
            lines.append(f"PublicKey = {peer.public_key}")
            lines.append(f"AllowedIPs = {peer.allowed_ips}")
            if peer.endpoint:
                lines.append(f"Endpoint = {peer.endpoint}")

        return "\n".join(lines) + "\n"

    @staticmethod
    def compute_hash(configs: Dict[str, str]) -> str:
        """SHA-256 hex digest of name:text pairs concatenated in name order"""
        digest = hashlib.sha256()
        for name in sorted(configs):
            digest.update(f"{name}:{configs[name]}".encode("utf-8"))
        return digest.hexdigest()

    # ========== Operations ==========

    def generate_configs(self, network_name: str) -> Tuple[Dict[str, str], str]:
        """
        Generate documents for the hub and every member of a network

        Returns:
            Tuple of (entity name -> config text, content hash)

        Raises:
            NetworkNotFoundError: If the network does not exist
            NotFoundError: If the network has no hub
        """
        network = self.storage.get_network_by_name(network_name)
        try:
            hub = self.storage.get_hub(network.id)
        except NotFoundError:
            raise NotFoundError(f"No hub found in network {network_name!r}") from None

        members = self.storage.list_members(network.id)

        configs = {hub.name: self.render(self.build_hub_config(hub, members))}
        for member in members:
            configs[member.name] = self.render(self.build_member_config(network, hub, member, members))

        content_hash = self.compute_hash(configs)
        logger.debug(f"Generated {len(configs)} configs for {network_name} ({content_hash[:12]})")
        return configs, content_hash

    def save_version(self, network_name: str) -> Tuple[ConfigSnapshotRecord, bool]:
        """
        Save a new config version if the content changed

        Returns:
            Tuple of (snapshot, created); created is False when the latest
            version already has the same hash
        """
        configs, content_hash = self.generate_configs(network_name)
        network = self.storage.get_network_by_name(network_name)

        try:
            latest = self.storage.get_latest_config_snapshot(network.id)
        except NotFoundError:
            latest = None

        if latest is not None and latest.content_hash == content_hash:
            logger.debug(f"Config for {network_name} unchanged at version {latest.version}")
            return latest, False

        snapshot = self.storage.save_config_snapshot(network.id, content_hash, configs)
        logger.info(f"Config version {snapshot.version} saved for {network_name}")
        return snapshot, True

    def get_history(self, network_name: str) -> List[ConfigSnapshotRecord]:
        """
        Raises:
            NotFoundError: If the network has no saved versions
        """
        network = self.storage.get_network_by_name(network_name)
        history = self.storage.list_config_snapshots(network.id)
        if not history:
            raise NotFoundError(f"No config versions found for network {network_name!r}")
        return history

    def get_config(self, network_name: str, version: int) -> ConfigSnapshotRecord:
        network = self.storage.get_network_by_name(network_name)
        return self.storage.get_config_snapshot(network.id, version)
