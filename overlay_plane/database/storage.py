# overlay_plane/database/storage.py
"""
Storage Manager - durable records for networks, hubs, members,
config snapshots and address pool snapshots

Each public method runs in exactly one transaction. Primary tables and
their name indexes are written together, so after an error or a crash
they never disagree.
"""

from typing import Optional, List, Dict
from sqlalchemy.orm import Session
import json
import logging
import uuid

from overlay_plane.exceptions import (
    NotFoundError,
    NetworkNotFoundError,
    DuplicateNameError,
    AlreadyExistsError,
    ValidationError,
)
from overlay_plane.schemas import (
    MemberType,
    NetworkRecord,
    HubRecord,
    MemberRecord,
    ConfigSnapshotRecord,
    AddressPoolState,
)
from .models import (
    Network,
    NetworkName,
    Hub,
    HubName,
    Member,
    MemberName,
    ConfigSnapshot,
    AddressPoolSnapshot,
    utcnow,
)
from .session import Database

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


class StorageManager:
    """
    Storage Manager for the overlay control plane

    Responsibilities:
    1. Keep primary tables and name indexes consistent
    2. Scope hub and member names to their network
    3. Cascade network deletion to everything the network owns
    4. Number config snapshots without gaps
    5. Persist address pool snapshots
    """

    def __init__(self, database: Database):
        self.db = database

    @classmethod
    def open(cls, database_url: str, lock_timeout: Optional[float] = None) -> "StorageManager":
        """Open (and initialize) a storage manager for a database URL"""
        database = Database(database_url, lock_timeout=lock_timeout)
        database.init_db()
        return cls(database)

    def close(self) -> None:
        self.db.dispose()

    # ========== Network Operations ==========

    def create_network(self, name: str, cidr: str) -> NetworkRecord:
        """
        Create a new network

        Raises:
            DuplicateNameError: If the name is already taken
        """
        with self.db.session_scope() as db:
            if db.get(NetworkName, name) is not None:
                raise DuplicateNameError(f"Network name {name!r} already exists")

            network = Network(id=_new_id(), name=name, cidr=cidr, created_at=utcnow())
            db.add(network)
            db.add(NetworkName(name=name, network_id=network.id))
            db.flush()

            logger.info(f"Network stored: {name} ({cidr})")
            return NetworkRecord.model_validate(network)

    def get_network_by_name(self, name: str) -> NetworkRecord:
        """
        Raises:
            NetworkNotFoundError: If no network has this name
        """
        with self.db.session_scope() as db:
            return NetworkRecord.model_validate(self._network_by_name(db, name))

    def get_network_by_id(self, network_id: str) -> NetworkRecord:
        """
        Raises:
            NetworkNotFoundError: If no network has this id
        """
        with self.db.session_scope() as db:
            network = db.get(Network, network_id)
            if network is None:
                raise NetworkNotFoundError(f"Network {network_id!r} not found")
            return NetworkRecord.model_validate(network)

    def list_networks(self) -> List[NetworkRecord]:
        """List all networks, oldest first"""
        with self.db.session_scope() as db:
            networks = db.query(Network).order_by(Network.created_at, Network.name).all()
            return [NetworkRecord.model_validate(n) for n in networks]

    def delete_network(self, name: str) -> None:
        """
        Delete a network and everything it owns in one transaction

        Removes hub, members, config snapshots, their index entries and the
        pool snapshot, then the network row and its name index entry.

        Raises:
            NetworkNotFoundError: If no network has this name
        """
        with self.db.session_scope() as db:
            network = self._network_by_name(db, name)
            network_id = network.id

            hubs = db.query(Hub).filter(Hub.network_id == network_id).delete(synchronize_session=False)
            db.query(HubName).filter(HubName.network_id == network_id).delete(synchronize_session=False)

            members = db.query(Member).filter(Member.network_id == network_id).delete(synchronize_session=False)
            db.query(MemberName).filter(MemberName.network_id == network_id).delete(synchronize_session=False)

            snapshots = db.query(ConfigSnapshot).filter(
                ConfigSnapshot.network_id == network_id
            ).delete(synchronize_session=False)

            db.query(AddressPoolSnapshot).filter(
                AddressPoolSnapshot.network_id == network_id
            ).delete(synchronize_session=False)

            db.delete(network)
            db.query(NetworkName).filter(NetworkName.name == name).delete(synchronize_session=False)

            logger.info(
                f"Network deleted: {name} (hubs={hubs}, members={members}, config_versions={snapshots})"
            )

    # ========== Hub Operations ==========

    def create_hub(
        self,
        network_id: str,
        name: str,
        public_address: str,
        port: int,
        address: str,
        private_key: str,
        public_key: str,
        pool_state: Optional[AddressPoolState] = None
    ) -> HubRecord:
        """
        Create the hub of a network

        Args:
            pool_state: Optional pool snapshot written in the same transaction

        Raises:
            NetworkNotFoundError: If the network does not exist
            AlreadyExistsError: If the network already has a hub
            DuplicateNameError: If the name is taken within the network
        """
        with self.db.session_scope() as db:
            self._require_network(db, network_id)

            if db.query(Hub).filter(Hub.network_id == network_id).first() is not None:
                raise AlreadyExistsError(f"Hub already exists for network {network_id!r}")

            if db.get(HubName, (network_id, name)) is not None:
                raise DuplicateNameError(f"Hub name {name!r} already exists")

            now = utcnow()
            hub = Hub(
                id=_new_id(),
                network_id=network_id,
                name=name,
                public_address=public_address,
                port=port,
                address=address,
                private_key=private_key,
                public_key=public_key,
                created_at=now,
                updated_at=now
            )
            db.add(hub)
            db.add(HubName(network_id=network_id, name=name, hub_id=hub.id))
            if pool_state is not None:
                self._put_pool_state(db, network_id, pool_state)
            db.flush()

            return HubRecord.model_validate(hub)

    def get_hub(self, network_id: str) -> HubRecord:
        """
        Get the hub of a network

        Raises:
            NotFoundError: If the network has no hub
        """
        with self.db.session_scope() as db:
            return HubRecord.model_validate(self._hub_of(db, network_id))

    def get_hub_by_name(self, network_id: str, name: str) -> HubRecord:
        """
        Raises:
            NotFoundError: If no hub has this name in the network
        """
        with self.db.session_scope() as db:
            index = db.get(HubName, (network_id, name))
            if index is None:
                raise NotFoundError(f"Hub {name!r} not found")
            hub = db.get(Hub, index.hub_id)
            if hub is None:
                raise NotFoundError(f"Hub data for {name!r} not found")
            return HubRecord.model_validate(hub)

    def update_hub(self, hub_id: str, public_address: str, port: int) -> HubRecord:
        """
        Update hub reachability

        Raises:
            NotFoundError: If the hub does not exist
        """
        with self.db.session_scope() as db:
            hub = db.get(Hub, hub_id)
            if hub is None:
                raise NotFoundError(f"Hub {hub_id!r} not found")

            hub.public_address = public_address
            hub.port = port
            hub.updated_at = utcnow()
            db.flush()

            return HubRecord.model_validate(hub)

    def delete_hub(self, network_id: str) -> None:
        """
        Delete the hub record and its name index entry

        Members are left untouched.

        Raises:
            NotFoundError: If the network has no hub
        """
        with self.db.session_scope() as db:
            hub = self._hub_of(db, network_id)
            db.query(HubName).filter(
                HubName.network_id == network_id,
                HubName.name == hub.name
            ).delete(synchronize_session=False)
            db.delete(hub)

    # ========== Member Operations ==========

    def create_member(
        self,
        network_id: str,
        name: str,
        public_address: str,
        port: int,
        address: str,
        member_type: MemberType,
        private_key: str,
        public_key: str,
        pool_state: Optional[AddressPoolState] = None
    ) -> MemberRecord:
        """
        Create a member

        Args:
            pool_state: Optional pool snapshot written in the same transaction

        Raises:
            NetworkNotFoundError: If the network does not exist
            DuplicateNameError: If the name is taken within the network
        """
        with self.db.session_scope() as db:
            self._require_network(db, network_id)

            if db.get(MemberName, (network_id, name)) is not None:
                raise DuplicateNameError(f"Member name {name!r} already exists")

            now = utcnow()
            member = Member(
                id=_new_id(),
                network_id=network_id,
                name=name,
                public_address=public_address or "",
                port=port,
                address=address,
                type=MemberType(member_type).value,
                private_key=private_key,
                public_key=public_key,
                created_at=now,
                updated_at=now
            )
            db.add(member)
            db.add(MemberName(network_id=network_id, name=name, member_id=member.id))
            if pool_state is not None:
                self._put_pool_state(db, network_id, pool_state)
            db.flush()

            return MemberRecord.model_validate(member)

    def get_member(self, network_id: str, name: str) -> MemberRecord:
        """
        Raises:
            NotFoundError: If no member has this name in the network
        """
        with self.db.session_scope() as db:
            return MemberRecord.model_validate(self._member_by_name(db, network_id, name))

    def list_members(self, network_id: str) -> List[MemberRecord]:
        """List members of a network ordered by name"""
        with self.db.session_scope() as db:
            members = db.query(Member).filter(
                Member.network_id == network_id
            ).order_by(Member.name).all()
            return [MemberRecord.model_validate(m) for m in members]

    def update_member(
        self,
        member_id: str,
        public_address: str,
        port: int,
        member_type: MemberType
    ) -> MemberRecord:
        """
        Update member reachability and type; the address is never changed

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.db.session_scope() as db:
            member = db.get(Member, member_id)
            if member is None:
                raise NotFoundError(f"Member {member_id!r} not found")

            member.public_address = public_address or ""
            member.port = port
            member.type = MemberType(member_type).value
            member.updated_at = utcnow()
            db.flush()

            return MemberRecord.model_validate(member)

    def delete_member(
        self,
        network_id: str,
        name: str,
        pool_state: Optional[AddressPoolState] = None
    ) -> MemberRecord:
        """
        Delete a member and its name index entry

        Args:
            pool_state: Optional pool snapshot written in the same transaction

        Returns:
            The deleted record

        Raises:
            NotFoundError: If no member has this name in the network
        """
        with self.db.session_scope() as db:
            member = self._member_by_name(db, network_id, name)
            record = MemberRecord.model_validate(member)

            db.query(MemberName).filter(
                MemberName.network_id == network_id,
                MemberName.name == name
            ).delete(synchronize_session=False)
            db.delete(member)
            if pool_state is not None:
                self._put_pool_state(db, network_id, pool_state)

            return record

    # ========== Config Snapshot Operations ==========

    def save_config_snapshot(
        self,
        network_id: str,
        content_hash: str,
        configs: Dict[str, str]
    ) -> ConfigSnapshotRecord:
        """
        Append a new config version (1 + current max, or 1)

        Raises:
            NetworkNotFoundError: If the network does not exist
        """
        with self.db.session_scope() as db:
            self._require_network(db, network_id)

            latest = self._latest_snapshot(db, network_id)
            next_version = latest.version + 1 if latest is not None else 1

            snapshot = ConfigSnapshot(
                id=_new_id(),
                network_id=network_id,
                version=next_version,
                content_hash=content_hash,
                configs_json=json.dumps(configs, sort_keys=True),
                created_at=utcnow()
            )
            db.add(snapshot)
            db.flush()

            return ConfigSnapshotRecord.model_validate(snapshot)

    def get_latest_config_snapshot(self, network_id: str) -> ConfigSnapshotRecord:
        """
        Raises:
            NotFoundError: If the network has no config versions
        """
        with self.db.session_scope() as db:
            latest = self._latest_snapshot(db, network_id)
            if latest is None:
                raise NotFoundError(f"No config version found for network {network_id!r}")
            return ConfigSnapshotRecord.model_validate(latest)

    def get_config_snapshot(self, network_id: str, version: int) -> ConfigSnapshotRecord:
        """
        Raises:
            NotFoundError: If the version does not exist
        """
        with self.db.session_scope() as db:
            snapshot = db.query(ConfigSnapshot).filter(
                ConfigSnapshot.network_id == network_id,
                ConfigSnapshot.version == version
            ).first()
            if snapshot is None:
                raise NotFoundError(f"Config version {version} not found for network {network_id!r}")
            return ConfigSnapshotRecord.model_validate(snapshot)

    def list_config_snapshots(self, network_id: str) -> List[ConfigSnapshotRecord]:
        """List all config versions in ascending order"""
        with self.db.session_scope() as db:
            snapshots = db.query(ConfigSnapshot).filter(
                ConfigSnapshot.network_id == network_id
            ).order_by(ConfigSnapshot.version).all()
            return [ConfigSnapshotRecord.model_validate(s) for s in snapshots]

    def get_config_hash(self, network_id: str, version: int) -> str:
        """Get the content hash of a specific version"""
        return self.get_config_snapshot(network_id, version).content_hash

    # ========== Address Pool Operations ==========

    def save_pool_state(self, network_id: str, state: AddressPoolState) -> None:
        """Persist (overwrite) the pool snapshot of a network"""
        with self.db.session_scope() as db:
            self._put_pool_state(db, network_id, state)

    def get_pool_state(self, network_id: str) -> AddressPoolState:
        """
        Raises:
            NotFoundError: If no snapshot is stored
            ValidationError: If the stored snapshot cannot be decoded
        """
        with self.db.session_scope() as db:
            row = db.get(AddressPoolSnapshot, network_id)
            if row is None:
                raise NotFoundError(f"Address pool state not found for network {network_id}")
            data = row.state_json

        try:
            return AddressPoolState.model_validate_json(data)
        except ValueError as e:
            raise ValidationError(f"Corrupt address pool state for network {network_id}: {e}") from e

    # ========== Helpers ==========

    def _network_by_name(self, db: Session, name: str) -> Network:
        index = db.get(NetworkName, name)
        if index is None:
            raise NetworkNotFoundError(f"Network {name!r} not found")
        network = db.get(Network, index.network_id)
        if network is None:
            raise NetworkNotFoundError(f"Network data for {name!r} not found")
        return network

    def _require_network(self, db: Session, network_id: str) -> Network:
        network = db.get(Network, network_id)
        if network is None:
            raise NetworkNotFoundError(f"Network {network_id!r} not found")
        return network

    def _hub_of(self, db: Session, network_id: str) -> Hub:
        hub = db.query(Hub).filter(Hub.network_id == network_id).first()
        if hub is None:
            raise NotFoundError(f"No hub found for network {network_id!r}")
        return hub

    def _member_by_name(self, db: Session, network_id: str, name: str) -> Member:
        index = db.get(MemberName, (network_id, name))
        if index is None:
            raise NotFoundError(f"Member {name!r} not found")
        member = db.get(Member, index.member_id)
        if member is None:
            raise NotFoundError(f"Member data for {name!r} not found")
        return member

    def _latest_snapshot(self, db: Session, network_id: str) -> Optional[ConfigSnapshot]:
        return db.query(ConfigSnapshot).filter(
            ConfigSnapshot.network_id == network_id
        ).order_by(ConfigSnapshot.version.desc()).first()

    def _put_pool_state(self, db: Session, network_id: str, state: AddressPoolState) -> None:
        row = db.get(AddressPoolSnapshot, network_id)
        data = state.model_dump_json()
        if row is None:
            db.add(AddressPoolSnapshot(network_id=network_id, state_json=data, updated_at=utcnow()))
        else:
            row.state_json = data
            row.updated_at = utcnow()
