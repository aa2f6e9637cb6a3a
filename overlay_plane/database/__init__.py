# overlay_plane/database/__init__.py
"""
Database modules
"""

from .session import Database, create_sqlite_engine
from .models import (
    Base,
    Network,
    NetworkName,
    Hub,
    HubName,
    Member,
    MemberName,
    ConfigSnapshot,
    AddressPoolSnapshot,
)
from .storage import StorageManager

__all__ = [
    # Session
    "Database",
    "create_sqlite_engine",
    # Models
    "Base",
    "Network",
    "NetworkName",
    "Hub",
    "HubName",
    "Member",
    "MemberName",
    "ConfigSnapshot",
    "AddressPoolSnapshot",
    # Storage
    "StorageManager",
]
