"""Disk reconciliation engine.

Diffs planned disks against observed disks by slot and issues the minimal
set of disk operations:

    in both      -> grow-resize / ratelimit / relabel (each independent)
    plan only    -> vms-add-disk
    state only   -> vm-remove-disk, inside one stop/restart bracket

Rules:
- Sector size is immutable.  A change on an existing slot is rejected
  before any remote call is issued for the batch.
- Size only grows.  A planned size <= observed size is a no-op.
- Failures abort the batch.  Whatever already succeeded stays applied
  remotely; the next apply re-diffs from observed state.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from vstack_provider._logging import get_logger
from vstack_provider.exceptions import MappingError, PolicyError, SectorSizeChangeError, VStackError
from vstack_provider.mapper import apply_default_sector_size, effective_sector_size, gb_to_bytes, sector_size_payload
from vstack_provider.power import powered_off
from vstack_provider.protocol import AddDiskParams

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from vstack_provider.client import VStackClient
    from vstack_provider.models import Disk

logger = get_logger(__name__)


@dataclass
class DiskDiff:
    """Slot partition of planned vs observed disks."""

    updates: list[tuple[Disk, Disk]] = field(default_factory=list)  # (planned, observed)
    additions: list[Disk] = field(default_factory=list)
    removals: list[Disk] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not (self.updates or self.additions or self.removals)


def _by_slot(disks: Iterable[Disk], vm_id: int, source: str) -> dict[int, Disk]:
    slots: dict[int, Disk] = {}
    for disk in disks:
        if disk.slot in slots:
            msg = f"Duplicate disk slot {disk.slot} in {source}"
            raise PolicyError(msg, {"vm_id": vm_id, "slot": disk.slot})
        slots[disk.slot] = disk
    return slots


def diff_disks(planned: Iterable[Disk], observed: Iterable[Disk], vm_id: int = 0) -> DiskDiff:
    """Partition disks by slot into updates, additions and removals.

    Raises:
        PolicyError: A slot appears twice on one side
    """
    plan_slots = _by_slot(planned, vm_id, "configuration")
    state_slots = _by_slot(observed, vm_id, "state")

    diff = DiskDiff()
    for slot in sorted(plan_slots):
        if slot in state_slots:
            diff.updates.append((plan_slots[slot], state_slots[slot]))
        else:
            diff.additions.append(plan_slots[slot])
    diff.removals = [state_slots[slot] for slot in sorted(state_slots) if slot not in plan_slots]
    return diff


def check_sector_size(planned: Disk, observed: Disk, vm_id: int) -> None:
    """Reject a sector size change on an existing slot.

    An observed disk without sector size data is compared as the default.

    Raises:
        SectorSizeChangeError: Planned and observed sector sizes differ
    """
    want = effective_sector_size(planned)
    have = effective_sector_size(observed)
    if want != have:
        logger.warning(
            "Rejected sector size change on disk slot %d",
            planned.slot,
            extra={"vm_id": vm_id, "slot": planned.slot},
        )
        msg = (
            f"Cannot modify sector_size for disk in slot {planned.slot}. "
            "To change sector_size, remove the disk and add a new one with the desired sector_size."
        )
        raise SectorSizeChangeError(
            msg,
            {
                "vm_id": vm_id,
                "slot": planned.slot,
                "planned": want.model_dump(),
                "observed": have.model_dump(),
            },
        )


@contextmanager
def _attributed(vm_id: int, slot: int, operation: str) -> Iterator[None]:
    # Enrich remote errors with the disk being worked on, then re-raise as-is.
    try:
        yield
    except VStackError as e:
        e.context.setdefault("vm_id", vm_id)
        e.context.setdefault("slot", slot)
        e.context.setdefault("operation", operation)
        raise


class DiskReconciler:
    """Applies a DiskDiff through the remote client.

    Callers must hold the VM lock for the whole reconcile() call.
    """

    __slots__ = ("_client",)

    def __init__(self, client: VStackClient) -> None:
        self._client = client

    async def reconcile(
        self,
        vm_id: int,
        planned: Iterable[Disk],
        observed: Iterable[Disk],
        oper_status: int | None,
    ) -> DiskDiff:
        """Reconcile disks for one VM.

        Args:
            vm_id: VM owning the disks
            planned: Disks from configuration
            observed: Disks from prior state
            oper_status: Observed status captured before the batch; decides
                the stop/restart bracket around removals

        Returns:
            The diff that was applied

        Raises:
            SectorSizeChangeError: Sector size changed on an existing slot
            PolicyError: Duplicate slots
            VStackError: Any remote failure, with vm_id/slot/operation context
        """
        diff = diff_disks(apply_default_sector_size(planned), observed, vm_id)

        # Validate every update candidate before touching anything remote.
        updates: list[tuple[Disk, Disk, str]] = []
        for want, have in diff.updates:
            check_sector_size(want, have, vm_id)
            if not have.guid:
                msg = f"Disk in slot {have.slot} has no GUID in state"
                raise MappingError(msg, {"vm_id": vm_id, "slot": have.slot})
            updates.append((want, have, have.guid))

        for want, have, guid in updates:
            await self._update_disk(vm_id, want, have, guid)

        for disk in diff.additions:
            await self._add_disk(vm_id, disk)

        if diff.removals:
            await self._remove_disks(vm_id, diff.removals, oper_status)

        return diff

    async def _update_disk(self, vm_id: int, want: Disk, have: Disk, guid: str) -> None:
        if want.size > have.size:
            logger.info(
                "Growing disk slot %d: %d GB -> %d GB",
                want.slot,
                have.size,
                want.size,
                extra={"vm_id": vm_id, "slot": want.slot},
            )
            with _attributed(vm_id, want.slot, "resize"):
                await self._client.resize_disk(vm_id, guid, gb_to_bytes(want.size))

        if (want.iops_limit or 0) != (have.iops_limit or 0) or (want.mbps_limit or 0) != (have.mbps_limit or 0):
            logger.debug("Updating rate limits for disk slot %d", want.slot, extra={"vm_id": vm_id, "slot": want.slot})
            with _attributed(vm_id, want.slot, "ratelimit"):
                await self._client.ratelimit_disk(vm_id, guid, want.mbps_limit, want.iops_limit)

        if (want.label or "") != (have.label or ""):
            logger.debug("Relabelling disk slot %d", want.slot, extra={"vm_id": vm_id, "slot": want.slot})
            with _attributed(vm_id, want.slot, "set-label"):
                await self._client.set_disk_label(vm_id, guid, want.label or "")

    async def _add_disk(self, vm_id: int, disk: Disk) -> None:
        logger.info("Adding disk slot %d (%d GB)", disk.slot, disk.size, extra={"vm_id": vm_id, "slot": disk.slot})
        params = AddDiskParams(
            vm_id=vm_id,
            size=gb_to_bytes(disk.size),
            slot=disk.slot,
            label=disk.label,
            sector_size=sector_size_payload(disk),
            iops_limit=disk.iops_limit,
            mbps_limit=disk.mbps_limit,
        )
        with _attributed(vm_id, disk.slot, "add"):
            await self._client.add_disk(params)

    async def _remove_disks(self, vm_id: int, disks: list[Disk], oper_status: int | None) -> None:
        # One bracket for the batch, keyed on the status observed before it began.
        async with powered_off(self._client, vm_id, oper_status, stop_unless_offline=True):
            for disk in disks:
                if not disk.guid:
                    msg = f"Disk in slot {disk.slot} has no GUID in state"
                    raise MappingError(msg, {"vm_id": vm_id, "slot": disk.slot})
                logger.info("Removing disk slot %d", disk.slot, extra={"vm_id": vm_id, "slot": disk.slot})
                with _attributed(vm_id, disk.slot, "remove"):
                    await self._client.remove_disk(vm_id, disk.guid)
