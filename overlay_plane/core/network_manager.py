# overlay_plane/core/network_manager.py
"""
Network Manager - Handles network, hub and member lifecycle
"""

from typing import Optional, List
import logging

from overlay_plane.config import settings
from overlay_plane.database.storage import StorageManager
from overlay_plane.exceptions import (
    NotFoundError,
    ValidationError,
    DuplicateNameError,
    AddressConflictError,
    InvalidReleaseError,
)
from overlay_plane.schemas import MemberType, NetworkRecord, HubRecord, MemberRecord
from .ipam import AddressPool, PoolRegistry
from .keys import KeyPairGenerator
from .validation import NetworkValidator

logger = logging.getLogger(__name__)


def _parse_member_type(member_type) -> MemberType:
    try:
        return MemberType(member_type)
    except ValueError:
        raise ValidationError(
            f"Invalid member type {member_type!r}. Must be one of: {[t.value for t in MemberType]}"
        ) from None


class NetworkManager:
    """
    Network Manager for handling overlay topology mutations

    Responsibilities:
    1. Create and delete networks
    2. Place the hub on the reserved first address
    3. Allocate, recycle and persist member addresses
    4. Rebuild address pools from stored records after a restart
    5. Enforce the peer/route public address rules
    """

    def __init__(
        self,
        storage: StorageManager,
        validator: NetworkValidator,
        key_generator: KeyPairGenerator,
        pools: Optional[PoolRegistry] = None,
        default_port: Optional[int] = None
    ):
        self.storage = storage
        self.validator = validator
        self.key_generator = key_generator
        self.pools = pools if pools is not None else PoolRegistry()
        self.default_port = default_port or settings.DEFAULT_LISTEN_PORT

    # ========== Address Pool Reconciliation ==========

    def _ensure_pool(self, network: NetworkRecord) -> AddressPool:
        """
        Get the in-memory pool of a network, loading or rebuilding it

        Must be called with the network's pool lock held.
        """
        pool = self.pools.get(network.id)
        if pool is not None:
            return pool

        snapshot_exists = True
        try:
            pool = self._restore_pool(network)
        except NotFoundError:
            snapshot_exists = False
        except ValidationError as e:
            logger.warning(f"Failed to restore address pool for {network.name}, reconstructing: {e}")

        if pool is None:
            pool = self._reconstruct_pool(network)
            # Never overwrite an existing snapshot with a reconstruction
            if not snapshot_exists:
                self.storage.save_pool_state(network.id, pool.export_state())

        self.pools.put(network.id, pool)
        return pool

    def _restore_pool(self, network: NetworkRecord) -> AddressPool:
        """
        Raises:
            NotFoundError: If no snapshot is stored
            ValidationError: If the stored snapshot is unusable
        """
        pool = AddressPool.from_state(self.storage.get_pool_state(network.id))
        if pool.network_cidr != network.cidr:
            raise ValidationError(f"Snapshot is for {pool.network_cidr}, network is {network.cidr}")
        logger.debug(f"Restored address pool for {network.name} from snapshot")
        return pool

    def _reconstruct_pool(self, network: NetworkRecord) -> AddressPool:
        """Rebuild a pool from the stored hub and member records"""
        pool = AddressPool(network.cidr)

        try:
            hub = self.storage.get_hub(network.id)
        except NotFoundError:
            hub = None

        if hub is not None and hub.address != pool.hub_address:
            try:
                pool.mark_allocated(hub.address)
            except (AddressConflictError, ValidationError) as e:
                logger.warning(f"Hub {hub.name} address {hub.address} not marked: {e}")

        for member in self.storage.list_members(network.id):
            try:
                pool.mark_allocated(member.address)
            except (AddressConflictError, ValidationError) as e:
                logger.warning(f"Duplicate or invalid address for member {member.name}: {e}")

        pool.resync_cursor()
        logger.info(
            f"Reconstructed address pool for {network.name}: "
            f"{len(pool.allocated_addresses())} allocated, next index {pool.next_index}"
        )
        return pool

    # ========== Network Operations ==========

    def create_network(self, name: str, cidr: str) -> NetworkRecord:
        """
        Create a new network

        Args:
            name: Globally unique network name
            cidr: IPv4 block in CIDR notation; host bits are masked off

        Returns:
            Stored network record

        Raises:
            ValidationError: If name or CIDR is invalid
            DuplicateNameError: If the name is taken
        """
        self.validator.validate_network_name(name)
        self.validator.validate_cidr(cidr)

        pool = AddressPool(cidr)
        network = self.storage.create_network(name, pool.network_cidr)

        with self.pools.lock(network.id):
            self.pools.put(network.id, pool)

        logger.info(f"Network created: {name} ({pool.network_cidr}, hub {pool.hub_address})")
        return network

    def get_network(self, name: str) -> NetworkRecord:
        return self.storage.get_network_by_name(name)

    def list_networks(self) -> List[NetworkRecord]:
        return self.storage.list_networks()

    def delete_network(self, name: str) -> None:
        """
        Delete a network with its hub, members, config history and pool
        """
        network = self.storage.get_network_by_name(name)

        with self.pools.lock(network.id):
            self.storage.delete_network(name)
            self.pools.forget(network.id)

        logger.info(f"Network deleted: {name}")

    # ========== Hub Operations ==========

    def create_hub(
        self,
        network_name: str,
        name: str,
        public_address: str,
        port: Optional[int] = None
    ) -> HubRecord:
        """
        Create the hub of a network on the reserved first address

        Raises:
            NetworkNotFoundError: If the network does not exist
            ValidationError: If address or port is invalid
            AlreadyExistsError: If the network already has a hub
            DuplicateNameError: If a member already uses the name
            KeyGenerationError: If no key pair could be produced
        """
        network = self.storage.get_network_by_name(network_name)

        self.validator.validate_public_address(public_address)
        if port is None:
            port = self.default_port
        self.validator.validate_port(port)
        self._check_name_free_of_members(network, name)

        with self.pools.lock(network.id):
            pool = self._ensure_pool(network)
            keys = self.key_generator.generate()

            hub = self.storage.create_hub(
                network_id=network.id,
                name=name,
                public_address=public_address,
                port=port,
                address=pool.hub_address,
                private_key=keys.private_key,
                public_key=keys.public_key,
                pool_state=pool.export_state()
            )

        logger.info(f"Hub created: {name} -> {hub.address} in {network.name}")
        return hub

    def get_hub(self, network_name: str) -> HubRecord:
        network = self.storage.get_network_by_name(network_name)
        return self.storage.get_hub(network.id)

    def update_hub(
        self,
        network_name: str,
        public_address: str,
        port: Optional[int] = None
    ) -> HubRecord:
        """
        Update hub reachability; the hub address never changes

        Args:
            port: New listen port, or None to keep the current one
        """
        network = self.storage.get_network_by_name(network_name)
        hub = self.storage.get_hub(network.id)

        self.validator.validate_public_address(public_address)
        if port is None:
            port = hub.port
        self.validator.validate_port(port)

        updated = self.storage.update_hub(hub.id, public_address, port)
        logger.info(f"Hub updated: {hub.name} in {network.name}")
        return updated

    def delete_hub(self, network_name: str) -> None:
        """Delete the hub record; members keep their addresses"""
        network = self.storage.get_network_by_name(network_name)
        self.storage.delete_hub(network.id)
        logger.info(f"Hub deleted from {network.name}")

    # ========== Member Operations ==========

    def create_member(
        self,
        network_name: str,
        name: str,
        public_address: str = "",
        port: Optional[int] = None,
        member_type: Optional[MemberType] = None
    ) -> MemberRecord:
        """
        Create a member and allocate its overlay address

        Args:
            network_name: Owning network
            name: Member name, unique within the network
            public_address: Required for peer members, optional for route
            port: Listen port (default from settings)
            member_type: peer (default) or route

        Returns:
            Stored member record

        Raises:
            NetworkNotFoundError: If the network does not exist
            ValidationError: If input violates the address rules
            DuplicateNameError: If the name is taken
            PoolExhaustedError: If the network has no free address
            KeyGenerationError: If no key pair could be produced
        """
        network = self.storage.get_network_by_name(network_name)

        member_type = _parse_member_type(member_type or MemberType.PEER)
        public_address = public_address or ""
        self._validate_reachability(public_address, member_type)
        if port is None:
            port = self.default_port
        self.validator.validate_port(port)
        self._check_name_free_of_hub(network, name)

        with self.pools.lock(network.id):
            pool = self._ensure_pool(network)
            previous_state = pool.export_state()
            address = pool.allocate()

            try:
                keys = self.key_generator.generate()
                member = self.storage.create_member(
                    network_id=network.id,
                    name=name,
                    public_address=public_address,
                    port=port,
                    address=address,
                    member_type=member_type,
                    private_key=keys.private_key,
                    public_key=keys.public_key,
                    pool_state=pool.export_state()
                )
            except Exception:
                # Put back the pre-allocation cursor and recycle order
                self.pools.put(network.id, AddressPool.from_state(previous_state))
                raise

        logger.info(f"Member created: {name} ({member_type.value}) -> {address} in {network.name}")
        return member

    def get_member(self, network_name: str, name: str) -> MemberRecord:
        network = self.storage.get_network_by_name(network_name)
        return self.storage.get_member(network.id, name)

    def list_members(self, network_name: str) -> List[MemberRecord]:
        network = self.storage.get_network_by_name(network_name)
        return self.storage.list_members(network.id)

    def update_member(
        self,
        network_name: str,
        name: str,
        public_address: str,
        port: Optional[int] = None,
        member_type: Optional[MemberType] = None
    ) -> MemberRecord:
        """
        Update member reachability and type

        The public address rule is checked against the resulting type;
        the overlay address is never reassigned.
        """
        network = self.storage.get_network_by_name(network_name)
        member = self.storage.get_member(network.id, name)

        target_type = _parse_member_type(member_type) if member_type is not None else member.type
        public_address = public_address or ""
        self._validate_reachability(public_address, target_type)
        if port is None:
            port = member.port
        self.validator.validate_port(port)

        updated = self.storage.update_member(member.id, public_address, port, target_type)
        logger.info(f"Member updated: {name} ({target_type.value}) in {network.name}")
        return updated

    def delete_member(self, network_name: str, name: str) -> None:
        """
        Delete a member and recycle its address
        """
        network = self.storage.get_network_by_name(network_name)
        member = self.storage.get_member(network.id, name)

        with self.pools.lock(network.id):
            pool = self._ensure_pool(network)
            released = True
            try:
                pool.release(member.address)
            except InvalidReleaseError as e:
                # Address might already be released
                logger.warning(f"Failed to release address {member.address} of {name}: {e}")
                released = False

            try:
                self.storage.delete_member(network.id, name, pool_state=pool.export_state())
            except Exception:
                if released:
                    # Member still holds the address; reload from the stored snapshot
                    self.pools.discard(network.id)
                raise

        logger.info(f"Member deleted: {name} ({member.address}) from {network.name}")

    def pool_stats(self, network_name: str) -> dict:
        """Get address allocation statistics of a network"""
        network = self.storage.get_network_by_name(network_name)
        with self.pools.lock(network.id):
            return self._ensure_pool(network).stats()

    # ========== Helpers ==========

    def _validate_reachability(self, public_address: str, member_type: MemberType) -> None:
        if member_type == MemberType.PEER and not public_address:
            raise ValidationError("Peer type members require a public address")
        if public_address:
            self.validator.validate_public_address(public_address)

    def _check_name_free_of_hub(self, network: NetworkRecord, name: str) -> None:
        # Generated documents are keyed by entity name
        try:
            hub = self.storage.get_hub(network.id)
        except NotFoundError:
            return
        if hub.name == name:
            raise DuplicateNameError(f"Name {name!r} is used by the hub of {network.name}")

    def _check_name_free_of_members(self, network: NetworkRecord, name: str) -> None:
        try:
            self.storage.get_member(network.id, name)
        except NotFoundError:
            return
        raise DuplicateNameError(f"Name {name!r} is used by a member of {network.name}")
