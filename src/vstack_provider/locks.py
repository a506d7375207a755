"""Per-VM mutual exclusion registry.

Every operation that touches a VM or its disks/NICs holds that VM's lock
from the first remote read through final state mapping, so two stop /
mutate / restart sequences on the same VM never interleave.  Locks are
never taken across two VM ids, so there is no ordering deadlock.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from vstack_provider._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)


class VmLockRegistry:
    """One asyncio.Lock per VM id for the life of the registry.

    Entries are never evicted.  Memory grows with the number of distinct
    VM ids seen, which is bounded by the fleet size of one host process.
    """

    __slots__ = ("_locks",)

    def __init__(self) -> None:
        self._locks: dict[int, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, vm_id: object) -> bool:
        return vm_id in self._locks

    def acquire(self, vm_id: int) -> asyncio.Lock:
        """Return the lock for vm_id, creating it on first use.

        Concurrent callers for the same id always receive the same object.
        Creation needs no guard: there is no await between lookup and
        insert, so it is atomic on the event loop.

        Raises:
            ValueError: vm_id is not a positive integer
        """
        if vm_id <= 0:
            raise ValueError(f"Invalid VM id for locking: {vm_id}")
        return self._locks.setdefault(vm_id, asyncio.Lock())

    @asynccontextmanager
    async def lock(self, vm_id: int) -> AsyncIterator[None]:
        """Hold the VM's lock for the duration of the block."""
        vm_lock = self.acquire(vm_id)
        if vm_lock.locked():
            logger.debug("Waiting for VM lock", extra={"vm_id": vm_id})
        async with vm_lock:
            yield
