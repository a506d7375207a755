"""NIC lifecycle controller.

A NIC is a sub-resource of a VM with its own port id.  There is no
single-port fetch; a port is located by scanning the VM's network_ports.

Attach and detach need the VM powered off, so both run inside the
stop/restart bracket.  Only the rate limit changes in place.  Every
operation holds the owning VM's lock, shared with VmController.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vstack_provider._logging import get_logger
from vstack_provider.exceptions import ApiError, ImmutableFieldError, ImportIdError
from vstack_provider.locks import VmLockRegistry
from vstack_provider.models import NetworkPort, nic_replacement_fields
from vstack_provider.power import observed_status, powered_off
from vstack_provider.protocol import AddNicParams

if TYPE_CHECKING:
    from vstack_provider.client import VStackClient
    from vstack_provider.protocol import NetworkPortData

logger = get_logger(__name__)

IMPORT_ID_FORMAT = "vm_id/port_id"


def _positive_int(raw: str) -> int | None:
    try:
        value = int(raw.strip())
    except ValueError:
        return None
    return value if value > 0 else None


def parse_nic_import_id(import_id: str) -> tuple[int, int]:
    """Parse `"<vm_id>/<port_id>"` into two positive integers.

    Raises:
        ImportIdError: Wrong shape, or the half that failed to parse is named
    """
    parts = import_id.split("/")
    if len(parts) != 2:
        msg = f"Expected import ID in the format '{IMPORT_ID_FORMAT}', got '{import_id}'"
        raise ImportIdError(msg, {"import_id": import_id})

    vm_raw, port_raw = parts
    vm_id = _positive_int(vm_raw)
    if vm_id is None:
        msg = f"Unable to parse VM ID '{vm_raw}' in import ID '{import_id}'"
        raise ImportIdError(msg, {"import_id": import_id, "part": "vm_id"})
    port_id = _positive_int(port_raw)
    if port_id is None:
        msg = f"Unable to parse Port ID '{port_raw}' in import ID '{import_id}'"
        raise ImportIdError(msg, {"import_id": import_id, "part": "port_id"})
    return vm_id, port_id


def _require_ids(state: NetworkPort) -> tuple[int, int]:
    if state.vm_id <= 0:
        raise ValueError(f"NIC has no valid vm_id: {state.vm_id!r}")
    if not state.id or state.id <= 0:
        raise ValueError(f"NIC has no valid port id: {state.id!r}")
    return state.vm_id, state.id


def _observed_update(port: NetworkPortData) -> dict[str, Any]:
    update: dict[str, Any] = {
        "address": port.address,
        "mac": port.mac,
        "ip_guard": port.ip_guard,
        "ratelimit_mbits": port.ratelimit_mbits,
    }
    if port.slot is not None:
        update["slot"] = port.slot
    if port.network_id is not None:
        update["network_id"] = port.network_id
    return update


class NicController:
    """Create/read/update/delete/import for NICs.

    Args:
        client: Remote operation client
        locks: Per-VM lock registry, shared with VmController
    """

    __slots__ = ("_client", "_locks")

    def __init__(self, client: VStackClient, locks: VmLockRegistry | None = None) -> None:
        self._client = client
        self._locks = locks if locks is not None else VmLockRegistry()

    async def create(self, plan: NetworkPort) -> NetworkPort:
        """Attach a NIC, stopping and restarting the VM around it if running.

        A remote-assigned address only replaces a configured one when the
        response actually carries a non-empty address.
        """
        vm_id = plan.vm_id
        if vm_id <= 0:
            raise ValueError(f"NIC requires a valid vm_id, got {vm_id!r}")

        params = AddNicParams(
            id=vm_id,
            network_id=plan.network_id,
            slot=plan.slot,
            ratelimit_mbits=plan.ratelimit_mbits,
            address=plan.address or None,
            ip_guard=plan.ip_guard or None,
        )
        async with self._locks.lock(vm_id):
            status = await observed_status(self._client, vm_id)
            async with powered_off(self._client, vm_id, status):
                logger.info(
                    "Adding NIC on network %d slot %d",
                    plan.network_id,
                    plan.slot,
                    extra={"vm_id": vm_id},
                )
                data = await self._client.add_nic(params)

        if not data.port_id:
            raise ApiError(
                "vms-add-nic returned no port id",
                {"vm_id": vm_id, "slot": plan.slot},
                method=params.method,
            )

        update: dict[str, Any] = {
            "id": data.port_id,
            "mac": data.mac,
            "ip_guard": data.ip_guard,
            "ratelimit_mbits": data.ratelimit_mbits,
        }
        if data.address:
            update["address"] = data.address
        logger.info("Created NIC port %d", data.port_id, extra={"vm_id": vm_id, "port_id": data.port_id})
        return plan.model_copy(update=update)

    async def read(self, state: NetworkPort) -> NetworkPort | None:
        """Refresh a NIC. Returns None when the port no longer exists."""
        vm_id, port_id = _require_ids(state)
        async with self._locks.lock(vm_id):
            port = await self._find_port(vm_id, port_id)
        if port is None:
            logger.info("NIC port %d not found, treating as deleted", port_id, extra={"vm_id": vm_id})
            return None
        return state.model_copy(update=_observed_update(port))

    async def update(self, plan: NetworkPort, state: NetworkPort) -> NetworkPort:
        """Apply a rate-limit change, then re-fetch the port.

        Raises:
            ImmutableFieldError: A replace-on-change field differs
            ApiError: The port vanished during the update
        """
        vm_id, port_id = _require_ids(state)
        async with self._locks.lock(vm_id):
            changed = nic_replacement_fields(plan, state)
            if changed:
                msg = f"NIC {port_id}: fields {', '.join(changed)} require replacement, not update"
                raise ImmutableFieldError(msg, {"vm_id": vm_id, "port_id": port_id, "fields": changed})

            if plan.ratelimit_mbits is not None and plan.ratelimit_mbits != state.ratelimit_mbits:
                logger.info(
                    "Setting NIC rate limit to %d Mbit/s",
                    plan.ratelimit_mbits,
                    extra={"vm_id": vm_id, "port_id": port_id},
                )
                await self._client.ratelimit_nic(vm_id, port_id, plan.ratelimit_mbits)

            port = await self._find_port(vm_id, port_id)

        if port is None:
            raise ApiError(
                f"NIC port {port_id} not found on VM {vm_id} after update",
                {"vm_id": vm_id, "port_id": port_id},
                method="vm-get",
            )
        return plan.model_copy(update={"id": port_id, **_observed_update(port)})

    async def delete(self, state: NetworkPort) -> None:
        """Detach a NIC, stopping and restarting the VM around it if running."""
        vm_id, port_id = _require_ids(state)
        async with self._locks.lock(vm_id):
            status = await observed_status(self._client, vm_id)
            async with powered_off(self._client, vm_id, status):
                logger.info("Removing NIC port %d", port_id, extra={"vm_id": vm_id, "port_id": port_id})
                await self._client.remove_nic(vm_id, port_id)

    def import_state(self, import_id: str) -> NetworkPort:
        """Seed state from `"<vm_id>/<port_id>"`; the next read() fills the rest."""
        vm_id, port_id = parse_nic_import_id(import_id)
        return NetworkPort(id=port_id, vm_id=vm_id, network_id=0, slot=0)

    async def apply(self, plan: NetworkPort, state: NetworkPort | None) -> NetworkPort:
        """Host-boundary reconcile: create, replace, or update."""
        if state is None or not state.id:
            return await self.create(plan)

        changed = nic_replacement_fields(plan, state)
        if changed:
            logger.info(
                "Replacing NIC port %d: %s changed",
                state.id,
                ", ".join(changed),
                extra={"vm_id": state.vm_id, "port_id": state.id},
            )
            await self.delete(state)
            return await self.create(plan)

        return await self.update(plan, state)

    async def _find_port(self, vm_id: int, port_id: int) -> NetworkPortData | None:
        data = await self._client.vm_get(vm_id)
        for port in data.network_ports or []:
            if port.port_id == port_id:
                return port
        return None
