"""Stop/restart bracket for VM mutations that need the VM powered off.

Used for NIC add/remove and disk removal.  NIC changes stop the VM only
when it is running; disk removal stops it whenever it is not OFFLINE (or
CREATED).  Either way the VM is restarted after the block if and only if
it was running when the bracket was entered.  Callers must already hold the VM lock.

If the block raises, the VM is left stopped: no compensating restart is
attempted, the next apply converges from observed state.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from vstack_provider._logging import get_logger
from vstack_provider.status import VmAction, is_running, must_stop_before_removal

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from vstack_provider.client import VStackClient

logger = get_logger(__name__)


@asynccontextmanager
async def powered_off(
    client: VStackClient, vm_id: int, oper_status: int | None, *, stop_unless_offline: bool = False
) -> AsyncIterator[bool]:
    """Stop the VM, yield, then restart it if it had been running.

    Args:
        client: Remote operation client
        vm_id: VM to bracket
        oper_status: Observed status captured before the bracket
        stop_unless_offline: Stop on any status but OFFLINE or CREATED,
            not only when running

    Yields:
        Whether the VM was running (and therefore stopped) on entry
    """
    was_running = is_running(oper_status)
    must_stop = must_stop_before_removal(oper_status) if stop_unless_offline else was_running
    if must_stop:
        logger.info("Stopping VM before mutation", extra={"vm_id": vm_id})
        await client.perform_action(vm_id, VmAction.STOP)

    yield was_running

    if was_running:
        logger.info("Restarting VM after mutation", extra={"vm_id": vm_id})
        await client.perform_action(vm_id, VmAction.START)


async def observed_status(client: VStackClient, vm_id: int) -> int | None:
    """Describe the VM and return its current operational status."""
    data = await client.vm_get(vm_id)
    return data.oper_status
