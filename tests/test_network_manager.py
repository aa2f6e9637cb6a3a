"""Tests for network, hub and member lifecycle."""
import logging
import threading

import pytest

from overlay_plane.core.ipam import PoolRegistry
from overlay_plane.core.network_manager import NetworkManager
from overlay_plane.database.models import AddressPoolSnapshot
from overlay_plane.exceptions import (
    AlreadyExistsError,
    DuplicateNameError,
    KeyGenerationError,
    NetworkNotFoundError,
    NotFoundError,
    PoolExhaustedError,
    ValidationError,
)
from overlay_plane.schemas import MemberType


def _restart(manager: NetworkManager) -> NetworkManager:
    """Same storage, empty in-memory pools."""
    return NetworkManager(manager.storage, manager.validator, manager.key_generator, pools=PoolRegistry())


class TestNetworkLifecycle:
    def test_create_network(self, manager: NetworkManager) -> None:
        network = manager.create_network("testnet", "10.0.0.0/24")
        assert network.name == "testnet"
        assert network.cidr == "10.0.0.0/24"
        assert network.id in manager.pools
        assert manager.get_network("testnet") == network

    def test_cidr_is_normalized(self, manager: NetworkManager) -> None:
        network = manager.create_network("testnet", "10.0.0.42/24")
        assert network.cidr == "10.0.0.0/24"

    @pytest.mark.parametrize("name", ["", "1net", "my-net", "my net", "net_1"])
    def test_invalid_name(self, manager: NetworkManager, name: str) -> None:
        with pytest.raises(ValidationError):
            manager.create_network(name, "10.0.0.0/24")

    @pytest.mark.parametrize("cidr", ["10.0.0.0", "10.0.0.0/32", "10.0.0.0/31", "fd00::/64", "bogus/24"])
    def test_unusable_cidr(self, manager: NetworkManager, cidr: str) -> None:
        with pytest.raises(ValidationError):
            manager.create_network("testnet", cidr)
        assert manager.list_networks() == []

    def test_duplicate_network(self, manager: NetworkManager) -> None:
        manager.create_network("testnet", "10.0.0.0/24")
        with pytest.raises(DuplicateNameError):
            manager.create_network("testnet", "10.1.0.0/24")

    def test_delete_network_drops_pool(self, manager: NetworkManager) -> None:
        network = manager.create_network("testnet", "10.0.0.0/24")
        manager.create_hub("testnet", "hub", "hub.example.com")
        manager.create_member("testnet", "node1", "198.51.100.1")

        manager.delete_network("testnet")

        assert network.id not in manager.pools
        assert network.id not in manager.pools._locks
        with pytest.raises(NetworkNotFoundError):
            manager.get_network("testnet")
        with pytest.raises(NetworkNotFoundError):
            manager.delete_network("testnet")

    def test_recreated_network_starts_fresh(self, manager: NetworkManager) -> None:
        manager.create_network("testnet", "10.0.0.0/24")
        manager.create_hub("testnet", "hub", "hub.example.com")
        manager.create_member("testnet", "node1", "198.51.100.1")
        manager.delete_network("testnet")

        manager.create_network("testnet", "10.0.0.0/24")
        manager.create_hub("testnet", "hub", "hub.example.com")
        assert manager.create_member("testnet", "node1", "198.51.100.1").address == "10.0.0.2"


class TestHubLifecycle:
    def test_hub_gets_first_address(self, manager: NetworkManager, network) -> None:
        hub = manager.create_hub("testnet", "hub", "vpn.example.com")
        assert hub.address == "10.0.0.1"
        assert hub.port == 51820
        assert hub.private_key == "priv-0001"
        assert hub.public_key == "pub-0001"
        assert manager.get_hub("testnet") == hub

    def test_hub_persists_pool_snapshot(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com", port=51999)
        state = manager.storage.get_pool_state(network.id)
        assert state.hub_address == "10.0.0.1"
        assert state.allocated == []

    def test_second_hub_rejected(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        with pytest.raises(AlreadyExistsError):
            manager.create_hub("testnet", "hub2", "vpn2.example.com")

    def test_hub_requires_network(self, manager: NetworkManager) -> None:
        with pytest.raises(NetworkNotFoundError):
            manager.create_hub("ghost", "hub", "vpn.example.com")

    @pytest.mark.parametrize("address", ["", "no spaces.com x", "nodot"])
    def test_invalid_hub_address(self, manager: NetworkManager, network, address: str) -> None:
        with pytest.raises(ValidationError):
            manager.create_hub("testnet", "hub", address)

    @pytest.mark.parametrize("port", [0, 65536, -1])
    def test_invalid_hub_port(self, manager: NetworkManager, network, port: int) -> None:
        with pytest.raises(ValidationError):
            manager.create_hub("testnet", "hub", "vpn.example.com", port=port)

    def test_update_hub(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com", port=51000)

        updated = manager.update_hub("testnet", "203.0.113.10")
        assert updated.public_address == "203.0.113.10"
        assert updated.port == 51000
        assert updated.address == "10.0.0.1"

        assert manager.update_hub("testnet", "localhost", port=52000).port == 52000

        with pytest.raises(ValidationError):
            manager.update_hub("testnet", "bad address")

    def test_delete_hub_keeps_members(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        manager.create_member("testnet", "node1", "198.51.100.1")

        manager.delete_hub("testnet")

        with pytest.raises(NotFoundError):
            manager.get_hub("testnet")
        assert manager.get_member("testnet", "node1").address == "10.0.0.2"

        replacement = manager.create_hub("testnet", "hub", "vpn.example.com")
        assert replacement.address == "10.0.0.1"
        assert manager.create_member("testnet", "node2", "198.51.100.2").address == "10.0.0.3"

    def test_hub_name_cannot_shadow_member(self, manager: NetworkManager, network) -> None:
        manager.create_member("testnet", "node1", "198.51.100.1")
        with pytest.raises(DuplicateNameError):
            manager.create_hub("testnet", "node1", "vpn.example.com")


class TestMemberLifecycle:
    def test_address_allocation_and_reuse(self, manager: NetworkManager, network) -> None:
        assert manager.create_hub("testnet", "hub", "vpn.example.com").address == "10.0.0.1"
        assert manager.create_member("testnet", "alpha", "198.51.100.1").address == "10.0.0.2"
        assert manager.create_member("testnet", "beta", "198.51.100.2").address == "10.0.0.3"

        manager.delete_member("testnet", "alpha")
        assert manager.create_member("testnet", "gamma", "198.51.100.3").address == "10.0.0.2"

    def test_defaults(self, manager: NetworkManager, network) -> None:
        member = manager.create_member("testnet", "node1", "198.51.100.1")
        assert member.type == MemberType.PEER
        assert member.port == 51820

    def test_peer_requires_public_address(self, manager: NetworkManager, network) -> None:
        with pytest.raises(ValidationError, match="public address"):
            manager.create_member("testnet", "node1")
        with pytest.raises(ValidationError):
            manager.create_member("testnet", "node1", "", member_type=MemberType.PEER)

    def test_route_without_public_address(self, manager: NetworkManager, validator, network) -> None:
        member = manager.create_member("testnet", "node1", member_type=MemberType.ROUTE)
        assert member.public_address == ""
        assert member.type == MemberType.ROUTE
        # Empty address is never passed to the validator
        assert validator.checked_addresses == []

    def test_route_with_invalid_address(self, manager: NetworkManager, network) -> None:
        with pytest.raises(ValidationError):
            manager.create_member("testnet", "node1", "bad host", member_type="route")

    def test_member_type_as_string(self, manager: NetworkManager, network) -> None:
        member = manager.create_member("testnet", "node1", member_type="route")
        assert member.type == MemberType.ROUTE

    def test_unknown_member_type(self, manager: NetworkManager, network) -> None:
        with pytest.raises(ValidationError, match="Invalid member type"):
            manager.create_member("testnet", "node1", "198.51.100.1", member_type="relay")

    def test_invalid_port(self, manager: NetworkManager, network) -> None:
        with pytest.raises(ValidationError):
            manager.create_member("testnet", "node1", "198.51.100.1", port=70000)

    def test_missing_network(self, manager: NetworkManager) -> None:
        with pytest.raises(NetworkNotFoundError):
            manager.create_member("ghost", "node1", "198.51.100.1")
        with pytest.raises(NetworkNotFoundError):
            manager.list_members("ghost")

    def test_key_failure_releases_address(self, manager: NetworkManager, key_generator, network) -> None:
        key_generator.fail = True
        with pytest.raises(KeyGenerationError):
            manager.create_member("testnet", "node1", "198.51.100.1")
        key_generator.fail = False

        assert manager.list_members("testnet") == []
        assert manager.create_member("testnet", "node1", "198.51.100.1").address == "10.0.0.2"

    def test_duplicate_name_releases_address(self, manager: NetworkManager, network) -> None:
        manager.create_member("testnet", "node1", "198.51.100.1")
        with pytest.raises(DuplicateNameError):
            manager.create_member("testnet", "node1", "198.51.100.9")

        assert manager.pool_stats("testnet")["used"] == 1
        assert manager.create_member("testnet", "node2", "198.51.100.2").address == "10.0.0.3"

    @pytest.mark.parametrize("failure", ["duplicate", "keys"])
    def test_failed_create_keeps_recycle_order(self, manager: NetworkManager, key_generator, network,
                                               failure: str) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        for name in ("a", "b", "c", "d"):
            manager.create_member("testnet", name, "198.51.100.1")
        manager.delete_member("testnet", "a")
        manager.delete_member("testnet", "b")

        if failure == "duplicate":
            with pytest.raises(DuplicateNameError):
                manager.create_member("testnet", "c", "198.51.100.9")
        else:
            key_generator.fail = True
            with pytest.raises(KeyGenerationError):
                manager.create_member("testnet", "e", "198.51.100.9")
            key_generator.fail = False

        # In-memory pool matches the stored snapshot a restart would load
        live = manager.pools.get(network.id).export_state()
        assert live == manager.storage.get_pool_state(network.id)
        assert live.recycled == ["10.0.0.2", "10.0.0.3"]

        assert manager.create_member("testnet", "f", "198.51.100.6").address == "10.0.0.2"
        assert manager.create_member("testnet", "g", "198.51.100.7").address == "10.0.0.3"

    def test_member_name_cannot_shadow_hub(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "gateway", "vpn.example.com")
        with pytest.raises(DuplicateNameError):
            manager.create_member("testnet", "gateway", "198.51.100.1")

    def test_same_member_name_in_two_networks(self, manager: NetworkManager) -> None:
        manager.create_network("east", "10.0.0.0/24")
        manager.create_network("west", "10.1.0.0/24")
        assert manager.create_member("east", "node1", "198.51.100.1").address == "10.0.0.2"
        assert manager.create_member("west", "node1", "198.51.100.1").address == "10.1.0.2"

    def test_pool_exhaustion(self, manager: NetworkManager) -> None:
        manager.create_network("tiny", "10.9.0.0/30")
        manager.create_hub("tiny", "hub", "vpn.example.com")
        assert manager.create_member("tiny", "node1", "198.51.100.1").address == "10.9.0.2"
        with pytest.raises(PoolExhaustedError):
            manager.create_member("tiny", "node2", "198.51.100.2")
        assert [m.name for m in manager.list_members("tiny")] == ["node1"]

    def test_update_member(self, manager: NetworkManager, network) -> None:
        manager.create_member("testnet", "node1", member_type=MemberType.ROUTE, port=51001)

        with pytest.raises(ValidationError):
            manager.update_member("testnet", "node1", "", member_type=MemberType.PEER)

        updated = manager.update_member("testnet", "node1", "peer.example.com", member_type=MemberType.PEER)
        assert updated.type == MemberType.PEER
        assert updated.public_address == "peer.example.com"
        assert updated.port == 51001
        assert updated.address == "10.0.0.2"

    def test_update_member_keeps_type(self, manager: NetworkManager, network) -> None:
        manager.create_member("testnet", "node1", "198.51.100.1")
        with pytest.raises(ValidationError):
            manager.update_member("testnet", "node1", "")

        manager.create_member("testnet", "node2", member_type=MemberType.ROUTE)
        updated = manager.update_member("testnet", "node2", "", port=52000)
        assert updated.type == MemberType.ROUTE
        assert updated.port == 52000

    def test_delete_member(self, manager: NetworkManager, network) -> None:
        manager.create_member("testnet", "node1", "198.51.100.1")
        manager.delete_member("testnet", "node1")

        with pytest.raises(NotFoundError):
            manager.get_member("testnet", "node1")
        with pytest.raises(NotFoundError):
            manager.delete_member("testnet", "node1")
        state = manager.storage.get_pool_state(network.id)
        assert state.recycled == ["10.0.0.2"]
        assert state.allocated == []

    def test_delete_member_tolerates_unheld_address(self, manager: NetworkManager, network, caplog) -> None:
        member = manager.create_member("testnet", "node1", "198.51.100.1")
        manager.pools.get(network.id).release(member.address)

        with caplog.at_level(logging.WARNING):
            manager.delete_member("testnet", "node1")

        assert "Failed to release" in caplog.text
        assert manager.list_members("testnet") == []

    def test_concurrent_creates_get_unique_addresses(self, manager: NetworkManager, network) -> None:
        errors = []

        def worker(prefix: str) -> None:
            try:
                for i in range(5):
                    manager.create_member("testnet", f"{prefix}{i}", member_type=MemberType.ROUTE)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(p,)) for p in ("a", "b", "c", "d")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        addresses = [m.address for m in manager.list_members("testnet")]
        assert len(addresses) == 20
        assert len(set(addresses)) == 20
        assert len(manager.storage.get_pool_state(network.id).allocated) == 20


class TestPoolRecovery:
    def test_restart_restores_snapshot(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        for name in ("a", "b", "c"):
            manager.create_member("testnet", name, "198.51.100.1")
        manager.delete_member("testnet", "b")

        restarted = _restart(manager)
        # Recycled address survives the restart
        assert restarted.create_member("testnet", "d", "198.51.100.4").address == "10.0.0.3"
        assert restarted.create_member("testnet", "e", "198.51.100.5").address == "10.0.0.5"

    def test_reconstruct_without_snapshot(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        for name in ("a", "b", "c"):
            manager.create_member("testnet", name, "198.51.100.1")
        manager.delete_member("testnet", "a")

        with manager.storage.db.session_scope() as db:
            db.query(AddressPoolSnapshot).delete()

        restarted = _restart(manager)
        stats = restarted.pool_stats("testnet")
        assert stats["used"] == 2
        assert stats["next_index"] == 4

        new = restarted.create_member("testnet", "d", "198.51.100.4")
        assert new.address not in {"10.0.0.1", "10.0.0.3", "10.0.0.4"}
        assert new.address == "10.0.0.5"

        # Reconstruction is persisted when nothing was stored
        assert manager.storage.get_pool_state(network.id).allocated == ["10.0.0.3", "10.0.0.4", "10.0.0.5"]

    def test_corrupt_snapshot_falls_back_to_reconstruction(
        self, manager: NetworkManager, network, caplog
    ) -> None:
        manager.create_member("testnet", "a", "198.51.100.1")
        with manager.storage.db.session_scope() as db:
            db.get(AddressPoolSnapshot, network.id).state_json = "{broken"

        restarted = _restart(manager)
        with caplog.at_level(logging.WARNING):
            stats = restarted.pool_stats("testnet")

        assert stats["used"] == 1
        assert "reconstructing" in caplog.text
        # Existing snapshot is not overwritten by the reconstruction
        with manager.storage.db.session_scope() as db:
            assert db.get(AddressPoolSnapshot, network.id).state_json == "{broken"

    def test_reconstruct_logs_duplicate_addresses(self, manager: NetworkManager, network, caplog) -> None:
        manager.storage.create_member(network.id, "a", "198.51.100.1", 51820, "10.0.0.7",
                                      MemberType.PEER, "k1", "p1")
        manager.storage.create_member(network.id, "b", "198.51.100.2", 51820, "10.0.0.7",
                                      MemberType.PEER, "k2", "p2")
        manager.pools.clear()

        with caplog.at_level(logging.WARNING):
            member = manager.create_member("testnet", "c", "198.51.100.3")

        assert "Duplicate or invalid address" in caplog.text
        assert member.address == "10.0.0.8"

    def test_pool_stats(self, manager: NetworkManager, network) -> None:
        manager.create_hub("testnet", "hub", "vpn.example.com")
        manager.create_member("testnet", "a", "198.51.100.1")
        stats = manager.pool_stats("testnet")
        assert stats["hub"] == "10.0.0.1"
        assert stats["used"] == 1
        assert stats["total_hosts"] == 253
