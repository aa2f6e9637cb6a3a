# overlay_plane/bootstrap.py
"""
Service wiring
Builds storage, network manager and config generator from settings
"""

from dataclasses import dataclass
from typing import Optional
import logging

from overlay_plane.config import Settings, get_settings, configure_logging
from overlay_plane.core.config_generator import ConfigGenerator
from overlay_plane.core.ipam import PoolRegistry
from overlay_plane.core.keys import KeyPairGenerator, get_key_generator
from overlay_plane.core.network_manager import NetworkManager
from overlay_plane.core.validation import DefaultNetworkValidator, NetworkValidator
from overlay_plane.database.session import Database
from overlay_plane.database.storage import StorageManager

logger = logging.getLogger(__name__)


@dataclass
class OverlayServices:
    """Everything a front end needs to drive the control plane"""
    settings: Settings
    database: Database
    storage: StorageManager
    pools: PoolRegistry
    manager: NetworkManager
    generator: ConfigGenerator

    def close(self) -> None:
        """Drop cached pools and close pooled connections"""
        logger.info("Shutting down overlay services")
        self.pools.clear()
        self.database.dispose()


def create_services(
    settings: Optional[Settings] = None,
    validator: Optional[NetworkValidator] = None,
    key_generator: Optional[KeyPairGenerator] = None
) -> OverlayServices:
    """
    Wire settings -> logging -> storage -> manager -> generator

    Args:
        settings: Settings to use (default: cached environment settings)
        validator: Validator override (default: DefaultNetworkValidator)
        key_generator: Key capability override (default: KEY_BACKEND)
    """
    settings = settings or get_settings()
    configure_logging(settings)

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENV}")

    database = Database(settings.DATABASE_URL, lock_timeout=settings.DB_LOCK_TIMEOUT, config=settings)
    database.init_db()

    storage = StorageManager(database)
    pools = PoolRegistry()
    manager = NetworkManager(
        storage,
        validator or DefaultNetworkValidator(),
        key_generator or get_key_generator(settings.KEY_BACKEND),
        pools=pools,
        default_port=settings.DEFAULT_LISTEN_PORT
    )
    generator = ConfigGenerator(
        storage,
        post_up=settings.HUB_POST_UP,
        post_down=settings.HUB_POST_DOWN
    )

    logger.info("Overlay services started successfully")
    return OverlayServices(
        settings=settings,
        database=database,
        storage=storage,
        pools=pools,
        manager=manager,
        generator=generator
    )
