# overlay_plane/core/ipam.py
"""
IP Address Management (IPAM)
Per-network overlay address allocation with FIFO recycling
"""

import ipaddress
import threading
from collections import deque
from typing import Optional, List, Dict
import logging

from overlay_plane.schemas.pool import AddressPoolState
from overlay_plane.exceptions import (
    ValidationError,
    PoolExhaustedError,
    InvalidReleaseError,
    AddressConflictError,
)

logger = logging.getLogger(__name__)


class AddressPool:
    """
    Address pool for one overlay network

    Index space:
    - Index 0 is the first usable address, reserved for the hub
    - Members are handed indexes 1 .. total_usable - 1
    - Released addresses are reused first-freed, first-reused
    """

    def __init__(self, network_cidr: str):
        """
        Initialize pool with network CIDR

        Args:
            network_cidr: Network in CIDR notation (e.g., "10.0.0.0/24")

        Raises:
            ValidationError: If the CIDR is malformed, not IPv4, or too small
        """
        try:
            network = ipaddress.ip_network(network_cidr, strict=False)
        except (ValueError, TypeError) as e:
            raise ValidationError(f"Invalid CIDR {network_cidr!r}: {e}") from e

        if not isinstance(network, ipaddress.IPv4Network):
            raise ValidationError("Only IPv4 subnets are supported")

        if network.num_addresses <= 2:
            raise ValidationError(
                f"Network {network} must have at least 3 usable addresses"
            )

        self.network = network
        self.network_cidr = str(network)
        self._first_usable = network.network_address + 1
        self._hub_address = str(self._first_usable)
        # Excludes network and broadcast
        self.total_usable = network.num_addresses - 2

        self._allocated = {self._hub_address}
        self._recycled = deque()
        self._next_index = 1

    @property
    def hub_address(self) -> str:
        """Reserved hub address (first usable)"""
        return self._hub_address

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def capacity(self) -> int:
        """Total member addresses, hub excluded"""
        return self.total_usable - 1

    def contains(self, address: str) -> bool:
        """Check if address belongs to this pool's block"""
        try:
            return ipaddress.IPv4Address(address) in self.network
        except (ValueError, TypeError):
            return False

    def _address_at(self, index: int) -> str:
        return str(self._first_usable + index)

    def _index_of(self, address: str) -> int:
        return int(ipaddress.IPv4Address(address)) - int(self._first_usable)

    def allocate(self) -> str:
        """
        Allocate the next available member address

        Returns:
            IP address without CIDR (e.g., "10.0.0.2")

        Raises:
            PoolExhaustedError: If no recycled or fresh address remains
        """
        if self._recycled:
            address = self._recycled.popleft()
            self._allocated.add(address)
            logger.debug(f"Reused recycled address {address} in {self.network_cidr}")
            return address

        if self._next_index >= self.total_usable:
            raise PoolExhaustedError(
                f"No available addresses in {self.network_cidr} "
                f"(total usable: {self.total_usable}, allocated: {len(self._allocated)})",
                total=self.total_usable,
                allocated=len(self._allocated),
            )

        address = self._address_at(self._next_index)
        self._next_index += 1
        self._allocated.add(address)
        return address

    def release(self, address: str) -> None:
        """
        Return an address to the pool for recycling

        Raises:
            InvalidReleaseError: If address is the hub address or not allocated
        """
        if address == self._hub_address:
            raise InvalidReleaseError("Cannot release the hub address")
        if address not in self._allocated:
            raise InvalidReleaseError(f"Address {address} is not allocated")

        self._allocated.discard(address)
        self._recycled.append(address)

    def mark_allocated(self, address: str) -> None:
        """
        Mark an existing address as allocated

        Used only while reconstructing a pool from stored records;
        neither the cursor nor the recycle queue is touched.

        Raises:
            ValidationError: If address is empty or outside the block
            AddressConflictError: If address is already marked
        """
        if not address:
            raise ValidationError("Address cannot be empty")
        if not self.contains(address):
            raise ValidationError(f"Address {address} is not in network {self.network_cidr}")

        address = str(ipaddress.IPv4Address(address))
        if address in self._allocated:
            raise AddressConflictError(f"Address {address} is already allocated")
        self._allocated.add(address)

    def resync_cursor(self) -> None:
        """
        Move the cursor one past the highest marked index

        Call after marking stored addresses so new allocations never
        collide with them.
        """
        highest = 0
        for address in self._allocated:
            if address == self._hub_address:
                continue
            highest = max(highest, self._index_of(address))

        self._next_index = highest + 1

    def allocated_addresses(self) -> List[str]:
        """Get sorted copy of all allocated addresses, hub included"""
        return sorted(self._allocated, key=lambda a: int(ipaddress.IPv4Address(a)))

    def recycled_addresses(self) -> List[str]:
        """Get recycle queue in reuse order"""
        return list(self._recycled)

    def stats(self) -> dict:
        """
        Get address allocation statistics

        Returns:
            Dictionary with allocation stats
        """
        used = len(self._allocated) - 1
        return {
            "network": self.network_cidr,
            "hub": self._hub_address,
            "total_hosts": self.capacity,
            "used": used,
            "available": self.capacity - used,
            "recycled": len(self._recycled),
            "next_index": self._next_index,
            "utilization_percent": round((used / self.capacity) * 100, 2) if self.capacity > 0 else 0
        }

    def export_state(self) -> AddressPoolState:
        """Snapshot current state for persistence"""
        return AddressPoolState(
            network_cidr=self.network_cidr,
            hub_address=self._hub_address,
            allocated=[a for a in self.allocated_addresses() if a != self._hub_address],
            recycled=list(self._recycled),
            next_index=self._next_index,
        )

    @classmethod
    def from_state(cls, state: AddressPoolState) -> "AddressPool":
        """
        Restore a pool from a saved snapshot

        Raises:
            ValidationError: If the snapshot does not describe a valid pool
        """
        pool = cls(state.network_cidr)
        if state.hub_address != pool.hub_address:
            raise ValidationError(
                f"Snapshot hub address {state.hub_address} does not match "
                f"{pool.hub_address} for {pool.network_cidr}"
            )

        # Hub address is always allocated
        pool._allocated = {pool.hub_address}
        for address in state.allocated:
            if not pool.contains(address):
                raise ValidationError(f"Snapshot address {address} is not in {pool.network_cidr}")
            pool._allocated.add(address)

        pool._recycled = deque(state.recycled)
        pool._next_index = state.next_index
        return pool

    def __repr__(self):
        return f"<AddressPool(network={self.network_cidr}, allocated={len(self._allocated)}, next_index={self._next_index})>"


class PoolRegistry:
    """
    In-memory address pools keyed by network id

    Owned by whoever constructs the network manager; holds at most one
    pool per active network together with the lock that serializes
    allocate/release/persist sequences on it.
    """

    def __init__(self):
        self._pools: Dict[str, AddressPool] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def get(self, network_id: str) -> Optional[AddressPool]:
        return self._pools.get(network_id)

    def put(self, network_id: str, pool: AddressPool) -> None:
        self._pools[network_id] = pool

    def discard(self, network_id: str) -> None:
        """Forget the cached pool of a network"""
        self._pools.pop(network_id, None)

    def forget(self, network_id: str) -> None:
        """Drop both the pool and the lock of a deleted network"""
        with self._guard:
            self._pools.pop(network_id, None)
            self._locks.pop(network_id, None)

    def clear(self) -> None:
        self._pools.clear()

    def lock(self, network_id: str) -> threading.RLock:
        """Get the exclusive lock for one network's pool"""
        with self._guard:
            if network_id not in self._locks:
                self._locks[network_id] = threading.RLock()
            return self._locks[network_id]

    def __contains__(self, network_id: str) -> bool:
        return network_id in self._pools

    def __len__(self) -> int:
        return len(self._pools)
