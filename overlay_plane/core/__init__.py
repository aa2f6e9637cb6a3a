# overlay_plane/core/__init__.py
"""
Core business logic modules
"""

from .ipam import AddressPool, PoolRegistry
from .keys import KeyPair, KeyPairGenerator, X25519KeyGenerator, WgToolKeyGenerator, get_key_generator
from .validation import NetworkValidator, DefaultNetworkValidator, format_endpoint
from .network_manager import NetworkManager
from .config_generator import ConfigGenerator

__all__ = [
    # IPAM
    "AddressPool",
    "PoolRegistry",
    # Keys
    "KeyPair",
    "KeyPairGenerator",
    "X25519KeyGenerator",
    "WgToolKeyGenerator",
    "get_key_generator",
    # Validation
    "NetworkValidator",
    "DefaultNetworkValidator",
    "format_endpoint",
    # Managers
    "NetworkManager",
    "ConfigGenerator",
]
