"""VM lifecycle controller.

Orchestrates create/read/update/delete/import for the VM aggregate:

    create:  vms-create -> lock -> power action -> vm-get -> map
    read:    lock -> vm-get -> map (guest inputs carried forward)
    update:  lock -> disks -> vm-set (changed fields only) -> power action -> vm-get -> map
    delete:  lock -> stop if running -> vms-remove
    apply:   create | destroy+create (replace-on-change) | update

Every entry point holds the VM lock from its first remote read through
final mapping.  The lock registry must be shared with the NicController
managing the same VMs.

Usage:
    locks = VmLockRegistry()
    vms = VmController(client, locks)
    state = await vms.apply(plan, state)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from vstack_provider._logging import get_logger
from vstack_provider.disks import DiskReconciler
from vstack_provider.exceptions import ApiError, ImmutableFieldError, ImportIdError
from vstack_provider.locks import VmLockRegistry
from vstack_provider.mapper import mb_to_bytes, to_create_payload, to_state
from vstack_provider.models import VirtualMachine, vm_replacement_fields
from vstack_provider.power import observed_status
from vstack_provider.protocol import VmPatch
from vstack_provider.status import VmAction, VmStatus, is_offline, is_running

if TYPE_CHECKING:
    from vstack_provider.client import VStackClient

logger = get_logger(__name__)


def parse_vm_import_id(import_id: str) -> int:
    """Parse a VM import id: a single positive integer.

    Raises:
        ImportIdError: Not a positive integer
    """
    raw = import_id.strip()
    try:
        vm_id = int(raw)
    except ValueError:
        vm_id = 0
    if vm_id <= 0:
        msg = f"Expected import ID to be a positive integer VM ID, got '{import_id}'"
        raise ImportIdError(msg, {"import_id": import_id})
    return vm_id


def _require_id(state: VirtualMachine) -> int:
    if not state.id or state.id <= 0:
        msg = f"VM state has no valid id: {state.id!r}"
        raise ValueError(msg)
    return state.id


class VmController:
    """Create/read/update/delete/import for VMs.

    Args:
        client: Remote operation client
        locks: Per-VM lock registry, shared with NicController
    """

    __slots__ = ("_client", "_disks", "_locks")

    def __init__(self, client: VStackClient, locks: VmLockRegistry | None = None) -> None:
        self._client = client
        self._locks = locks if locks is not None else VmLockRegistry()
        self._disks = DiskReconciler(client)

    @property
    def locks(self) -> VmLockRegistry:
        return self._locks

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create(self, plan: VirtualMachine) -> VirtualMachine:
        """Create a VM, apply its requested action, and return mapped state.

        Raises:
            ApiError: vms-create failed or returned no VM id
            MappingError: Final description failed validation
        """
        params = to_create_payload(plan)
        logger.info("Creating VM %s", plan.name, extra={"vdc_id": plan.vdc_id, "disks": len(params.disks)})
        created = await self._client.vms_create(params)
        if not created.id:
            raise ApiError(
                "vms-create returned no VM id",
                {"name": plan.name},
                method=params.method,
            )
        vm_id = created.id

        async with self._locks.lock(vm_id):
            if plan.action is not None:
                status = await observed_status(self._client, vm_id)
                await self._apply_action(vm_id, plan.action, status, skip_satisfied=False)

            data = await self._client.vm_get(vm_id)
            state = to_state(data, plan)

        logger.info("Created VM %d", vm_id, extra={"vm_id": vm_id})
        return state

    async def read(self, state: VirtualMachine) -> VirtualMachine:
        """Refresh state from vm-get, preserving guest customization inputs."""
        vm_id = _require_id(state)
        async with self._locks.lock(vm_id):
            data = await self._client.vm_get(vm_id)
            return to_state(data, state)

    async def update(self, plan: VirtualMachine, state: VirtualMachine) -> VirtualMachine:
        """Converge an existing VM onto plan in place.

        Order: disks, then the vm-set patch, then the power action.  Any
        failure aborts the rest.

        Raises:
            ImmutableFieldError: A replace-on-change field differs
            SectorSizeChangeError: Disk sector size changed on an existing slot
            VStackError: Any remote failure
        """
        vm_id = _require_id(state)
        async with self._locks.lock(vm_id):
            changed = vm_replacement_fields(plan, state)
            if changed:
                msg = f"VM {vm_id}: fields {', '.join(changed)} require replacement, not update"
                raise ImmutableFieldError(msg, {"vm_id": vm_id, "fields": changed})

            await self._disks.reconcile(vm_id, plan.disks, state.disks, state.oper_status)

            patch = self._build_patch(plan, state)
            if patch is not None:
                logger.info(
                    "Patching VM %d: %s",
                    vm_id,
                    ", ".join(sorted(patch.model_dump(exclude_none=True))),
                    extra={"vm_id": vm_id},
                )
                await self._client.vm_set(vm_id, patch)

            if plan.action is not None:
                status = await observed_status(self._client, vm_id)
                await self._apply_action(vm_id, plan.action, status, skip_satisfied=True)

            data = await self._client.vm_get(vm_id)
            return to_state(data, plan.model_copy(update={"id": vm_id}))

    async def delete(self, state: VirtualMachine) -> None:
        """Stop the VM if running, then remove it from its VDC."""
        vm_id = _require_id(state)
        async with self._locks.lock(vm_id):
            status = await observed_status(self._client, vm_id)
            if is_running(status):
                logger.info("Stopping VM %d before removal", vm_id, extra={"vm_id": vm_id})
                await self._client.perform_action(vm_id, VmAction.STOP)
            logger.info("Removing VM %d", vm_id, extra={"vm_id": vm_id, "vdc_id": state.vdc_id})
            await self._client.vms_remove(vm_id, state.vdc_id)

    def import_state(self, import_id: str) -> VirtualMachine:
        """Seed state with only the id; the next read() fills the rest.

        Raises:
            ImportIdError: import_id is not a positive integer
        """
        vm_id = parse_vm_import_id(import_id)
        return VirtualMachine.model_construct(id=vm_id, guest=None, disks=[])

    async def apply(self, plan: VirtualMachine, state: VirtualMachine | None) -> VirtualMachine:
        """Host-boundary reconcile: create, replace, or update.

        Replace-on-change fields are resolved here, so update() never sees them.
        """
        if state is None or not state.id:
            return await self.create(plan)

        changed = vm_replacement_fields(plan, state)
        if changed:
            logger.info(
                "Replacing VM %d: %s changed",
                state.id,
                ", ".join(changed),
                extra={"vm_id": state.id},
            )
            await self.delete(state)
            return await self.create(plan)

        return await self.update(plan, state)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _apply_action(
        self,
        vm_id: int,
        action: VmAction,
        oper_status: int | None,
        *,
        skip_satisfied: bool,
    ) -> None:
        """Apply start/stop with the bootstrap rule for stop.

        A VM that was never started (CREATED) or is not running is started
        before being stopped: the platform refuses to stop a VM that has not
        run at least once.  With skip_satisfied, an action the observed
        status already satisfies is not issued.
        """
        action = VmAction(action)
        if action is VmAction.START:
            if skip_satisfied and is_running(oper_status):
                return
            logger.info("Starting VM %d", vm_id, extra={"vm_id": vm_id})
            await self._client.perform_action(vm_id, VmAction.START)
            return

        if skip_satisfied and is_offline(oper_status):
            return
        if oper_status == VmStatus.CREATED or not is_running(oper_status):
            logger.info("Starting VM %d before first stop", vm_id, extra={"vm_id": vm_id})
            await self._client.perform_action(vm_id, VmAction.START)
        logger.info("Stopping VM %d", vm_id, extra={"vm_id": vm_id})
        await self._client.perform_action(vm_id, VmAction.STOP)

    @staticmethod
    def _build_patch(plan: VirtualMachine, state: VirtualMachine) -> VmPatch | None:
        changes: dict[str, object] = {}
        if plan.name != state.name:
            changes["name"] = plan.name
        if (plan.description or "") != (state.description or ""):
            changes["description"] = plan.description or ""
        if plan.cpus != state.cpus:
            changes["cpus"] = plan.cpus
        if plan.ram != state.ram:
            changes["ram"] = mb_to_bytes(plan.ram)
        if not changes:
            return None
        return VmPatch.model_validate(changes)
