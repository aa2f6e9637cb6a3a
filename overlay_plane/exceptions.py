# overlay_plane/exceptions.py
"""Exception types raised by the overlay control plane."""

from typing import Optional


class OverlayError(Exception):
    """Base exception for all overlay control plane errors."""
    pass


class ValidationError(OverlayError):
    """Malformed name, CIDR, address or port, or a type/address rule violation."""
    pass


class NotFoundError(OverlayError):
    """Requested network, hub, member, config version or pool state does not exist."""
    pass


class NetworkNotFoundError(NotFoundError):
    """The owning network does not exist."""
    pass


class DuplicateNameError(OverlayError):
    """Name already taken within its scope."""
    pass


class AlreadyExistsError(OverlayError):
    """A singleton resource (the network hub) already exists."""
    pass


class PoolError(OverlayError):
    """Address pool operation failed."""
    pass


class PoolExhaustedError(PoolError):
    """No addresses left to allocate."""
    def __init__(self, message: str, total: Optional[int] = None, allocated: Optional[int] = None) -> None:
        super().__init__(message)
        self.total = total
        self.allocated = allocated


class InvalidReleaseError(PoolError):
    """Release of the hub address or of an address that is not allocated."""
    pass


class AddressConflictError(PoolError):
    """Address is already marked allocated."""
    pass


class KeyGenerationError(OverlayError):
    """The key-pair capability failed to produce a key pair."""
    pass


class StorageError(OverlayError):
    """Underlying store failed; the operation had no effect."""
    pass


class StorageUnavailableError(StorageError):
    """Store lock could not be acquired within the configured timeout."""
    pass
