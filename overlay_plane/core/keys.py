# overlay_plane/core/keys.py
"""
WireGuard key-pair capability
The control plane only consumes key pairs; it never derives a public
key from a private key on its own
"""

import base64
import logging
import subprocess
from typing import NamedTuple, Protocol, runtime_checkable

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PrivateFormat,
    PublicFormat,
    NoEncryption,
)

from overlay_plane.exceptions import KeyGenerationError

logger = logging.getLogger(__name__)


class KeyPair(NamedTuple):
    private_key: str
    public_key: str


@runtime_checkable
class KeyPairGenerator(Protocol):
    """Returns a fresh, unique (private, public) pair on every call"""

    def generate(self) -> KeyPair: ...


class X25519KeyGenerator:
    """In-process Curve25519 keys, Base64 encoded like `wg genkey`"""

    def generate(self) -> KeyPair:
        try:
            private_key = X25519PrivateKey.generate()
            private_bytes = private_key.private_bytes(
                Encoding.Raw, PrivateFormat.Raw, NoEncryption()
            )
            public_bytes = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        except Exception as e:
            raise KeyGenerationError(f"Failed to generate WireGuard keys: {e}") from e

        return KeyPair(
            private_key=base64.b64encode(private_bytes).decode("ascii"),
            public_key=base64.b64encode(public_bytes).decode("ascii"),
        )


class WgToolKeyGenerator:
    """Key pairs from the wireguard-tools `wg` binary"""

    def __init__(self, wg_binary: str = "wg", timeout: int = 10):
        self.wg_binary = wg_binary
        self.timeout = timeout

    def generate(self) -> KeyPair:
        """
        Generate WireGuard private/public key pair using wg command

        Raises:
            KeyGenerationError: If wg is missing or fails
        """
        try:
            private_key = subprocess.run(
                [self.wg_binary, "genkey"],
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout
            ).stdout.strip()

            public_key = subprocess.run(
                [self.wg_binary, "pubkey"],
                input=private_key,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout
            ).stdout.strip()

        except subprocess.CalledProcessError as e:
            logger.error(f"Failed to generate WireGuard keys: {e.stderr}")
            raise KeyGenerationError("Failed to generate WireGuard keys. Is WireGuard installed?") from e
        except subprocess.TimeoutExpired as e:
            logger.error("Key generation command timed out")
            raise KeyGenerationError("WireGuard key generation timed out") from e
        except FileNotFoundError as e:
            logger.error(f"WireGuard '{self.wg_binary}' command not found")
            raise KeyGenerationError("WireGuard tools not installed. Please install wireguard-tools.") from e

        if not private_key or not public_key:
            raise KeyGenerationError("WireGuard returned an empty key")

        return KeyPair(private_key=private_key, public_key=public_key)


KEY_BACKENDS = {
    "x25519": X25519KeyGenerator,
    "wg": WgToolKeyGenerator,
}


def get_key_generator(backend: str) -> KeyPairGenerator:
    """Build the key generator named by the KEY_BACKEND setting"""
    try:
        return KEY_BACKENDS[backend.lower()]()
    except KeyError:
        raise ValueError(
            f"Unknown key backend {backend!r}. Must be one of: {sorted(KEY_BACKENDS)}"
        ) from None
