"""Pytest fixtures for overlay control plane tests."""
import itertools
from pathlib import Path

import pytest

from overlay_plane.core.config_generator import ConfigGenerator
from overlay_plane.core.ipam import PoolRegistry
from overlay_plane.core.keys import KeyPair
from overlay_plane.core.network_manager import NetworkManager
from overlay_plane.core.validation import DefaultNetworkValidator
from overlay_plane.database.storage import StorageManager
from overlay_plane.exceptions import KeyGenerationError


class FakeKeyGenerator:
    """Deterministic key pairs: priv-0001/pub-0001, priv-0002/pub-0002, ..."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self.fail = False

    def generate(self) -> KeyPair:
        if self.fail:
            raise KeyGenerationError("key backend unavailable")
        n = next(self._counter)
        return KeyPair(private_key=f"priv-{n:04d}", public_key=f"pub-{n:04d}")


class RecordingValidator(DefaultNetworkValidator):
    """Default rules, plus a log of every public address checked."""

    def __init__(self) -> None:
        self.checked_addresses = []

    def validate_public_address(self, address: str) -> None:
        self.checked_addresses.append(address)
        super().validate_public_address(address)


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "overlay.db"


@pytest.fixture
def storage(db_path: Path) -> StorageManager:
    store = StorageManager.open(f"sqlite:///{db_path}", lock_timeout=5.0)
    yield store
    store.close()


@pytest.fixture
def key_generator() -> FakeKeyGenerator:
    return FakeKeyGenerator()


@pytest.fixture
def validator() -> RecordingValidator:
    return RecordingValidator()


@pytest.fixture
def manager(storage: StorageManager, validator: RecordingValidator,
            key_generator: FakeKeyGenerator) -> NetworkManager:
    return NetworkManager(storage, validator, key_generator, pools=PoolRegistry(), default_port=51820)


@pytest.fixture
def generator(storage: StorageManager) -> ConfigGenerator:
    return ConfigGenerator(
        storage,
        post_up="sysctl -w net.ipv4.ip_forward=1",
        post_down="sysctl -w net.ipv4.ip_forward=0",
    )


@pytest.fixture
def network(manager: NetworkManager):
    """A /24 network named testnet with no hub."""
    return manager.create_network("testnet", "10.0.0.0/24")
