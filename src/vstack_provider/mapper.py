"""State mapper between vStack wire payloads and the configuration model.

Directions:
- to_state(): vm-get data -> VirtualMachine state (bytes -> MB/GB)
- to_create_payload(): VirtualMachine plan -> vms-create params (MB/GB -> bytes)
- format_disks(): planned disks -> vms-create disk entries

Mapping never mutates its inputs.  to_state() validates every required
field before building anything, so a MappingError leaves the caller's
prior state exactly as it was.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from vstack_provider import constants
from vstack_provider.exceptions import MappingError
from vstack_provider.models import Disk, Guest, SectorSize, VirtualMachine
from vstack_provider.protocol import (
    DiskPayload,
    GuestPayload,
    GuestUserPayload,
    ResolverPayload,
    SectorSizePayload,
    VmsCreateParams,
)
from vstack_provider.status import action_from_status

if TYPE_CHECKING:
    from collections.abc import Iterable

    from vstack_provider.protocol import DiskData, SectorSizeData, VmData

# ============================================================================
# Unit conversion
# ============================================================================


def mb_to_bytes(mb: int) -> int:
    return mb * constants.BYTES_PER_MB


def bytes_to_mb(size: int) -> int:
    return size // constants.BYTES_PER_MB


def gb_to_bytes(gb: int) -> int:
    return gb * constants.BYTES_PER_GB


def bytes_to_gb(size: int) -> int:
    return size // constants.BYTES_PER_GB


# ============================================================================
# Sector size defaults
# ============================================================================

DEFAULT_SECTOR_SIZE = SectorSize(
    logical=constants.DEFAULT_LOGICAL_SECTOR_SIZE,
    physical=constants.DEFAULT_PHYSICAL_SECTOR_SIZE,
)


def effective_sector_size(disk: Disk) -> SectorSize:
    return disk.sector_size if disk.sector_size is not None else DEFAULT_SECTOR_SIZE


def apply_default_sector_size(disks: Iterable[Disk]) -> list[Disk]:
    """Return copies of disks with unspecified sector sizes default-filled."""
    return [
        disk if disk.sector_size is not None else disk.model_copy(update={"sector_size": DEFAULT_SECTOR_SIZE})
        for disk in disks
    ]


def sector_size_payload(disk: Disk) -> SectorSizePayload:
    size = effective_sector_size(disk)
    return SectorSizePayload(logical=size.logical, physical=size.physical)


# ============================================================================
# Plan -> wire
# ============================================================================


def format_disks(disks: Iterable[Disk]) -> list[DiskPayload]:
    """Build the vms-create disk list (size in bytes, sector size filled)."""
    return [
        DiskPayload(
            size=gb_to_bytes(disk.size),
            slot=disk.slot,
            iops_limit=disk.iops_limit,
            mbps_limit=disk.mbps_limit,
            label=disk.label,
            sector_size=sector_size_payload(disk),
        )
        for disk in disks
    ]


def _non_empty(commands: list[str] | None) -> list[str] | None:
    kept = [cmd for cmd in commands or [] if cmd]
    return kept or None


def build_guest_payload(guest: Guest | None) -> GuestPayload | None:
    """Sparse guest customization: omit anything unset, empty or zero.

    Returns None when nothing at all is set.
    """
    if guest is None:
        return None

    resolver = None
    if guest.resolver is not None and (guest.resolver.name_server or guest.resolver.search):
        resolver = ResolverPayload(
            name_server=list(guest.resolver.name_server) or None,
            search=guest.resolver.search or None,
        )

    users = {
        name: GuestUserPayload(
            ssh_authorized_keys=list(user.ssh_authorized_keys) or None,
            password=user.password or None,
        )
        for name, user in guest.users.items()
    }

    payload = GuestPayload(
        hostname=guest.hostname or None,
        boot_cmds=_non_empty(guest.boot_cmds),
        run_cmds=_non_empty(guest.run_cmds),
        ssh_password_auth=guest.ssh_password_auth or None,
        resolver=resolver,
        users=users or None,
    )
    if not payload.model_dump(exclude_none=True):
        return None
    return payload


def to_create_payload(plan: VirtualMachine) -> VmsCreateParams:
    """Assemble vms-create params from a plan.

    Disks are default-filled first; cpu_priority defaults to 1.
    """
    return VmsCreateParams(
        name=plan.name,
        cpus=plan.cpus,
        ram=mb_to_bytes(plan.ram),
        boot_media=plan.boot_media,
        vcpu_class=plan.vcpu_class,
        os_type=plan.os_type,
        os_profile=plan.os_profile,
        vdc_id=plan.vdc_id,
        pool_selector=plan.pool_selector,
        description=plan.description,
        cpu_priority=plan.cpu_priority if plan.cpu_priority is not None else constants.DEFAULT_CPU_PRIORITY,
        disks=format_disks(apply_default_sector_size(plan.disks)),
        guest=build_guest_payload(plan.guest),
    )


# ============================================================================
# Wire -> state
# ============================================================================

_REQUIRED_INTS: tuple[tuple[str, str], ...] = (
    ("id", "ID"),
    ("cpus", "CPUs"),
    ("ram", "RAM"),
    ("cpu_priority", "CPU Priority"),
    ("boot_media_id", "Boot Media ID"),
    ("vcpu_class", "Vcpu Class"),
    ("os_type", "OS Type"),
    ("vdc", "Vdc ID"),
    ("admin_status", "Admin Status"),
    ("node", "Node"),
    ("create_completed", "Create Completed"),
    ("locked", "Locked"),
    ("status", "Status"),
    ("oper_status", "Oper Status"),
)

_REQUIRED_STRINGS: tuple[tuple[str, str], ...] = (
    ("name", "Name"),
    ("os_profile", "OS Profile"),
    ("pool", "Pool"),
)


def _require_int(value: int | None, label: str, context: dict[str, Any]) -> int:
    if value is None:
        raise MappingError(f"{label} is missing from the response", context)
    if value < 0:
        raise MappingError(f"{label} must be non-negative, got {value}", context)
    return value


def _map_sector_size(data: SectorSizeData | None) -> SectorSize | None:
    # Absent stays absent so the next apply can default it instead of freezing zeros.
    if data is None:
        return None
    return SectorSize(logical=data.logical, physical=data.physical)


def map_disk(data: DiskData, context: dict[str, Any] | None = None) -> Disk:
    """Validate and convert one remote disk (size bytes -> GB)."""
    context = {**(context or {}), "slot": data.slot}
    if not data.guid:
        raise MappingError("Disk GUID is missing from the response", context)
    slot = _require_int(data.slot, "Disk slot", context)
    if slot == 0:
        raise MappingError("Disk slot must be positive", context)
    size = _require_int(data.size, "Disk size", context)
    if data.iops_limit is not None:
        _require_int(data.iops_limit, "Disk IOPS limit", context)
    if data.mbps_limit is not None:
        _require_int(data.mbps_limit, "Disk Mbps limit", context)

    return Disk(
        guid=data.guid,
        slot=slot,
        size=bytes_to_gb(size),
        iops_limit=data.iops_limit,
        mbps_limit=data.mbps_limit,
        label=data.label,
        sector_size=_map_sector_size(data.sector_size),
    )


def map_disks(disks: Iterable[DiskData] | None, context: dict[str, Any] | None = None) -> list[Disk]:
    mapped = [map_disk(disk, context) for disk in disks or []]
    return sorted(mapped, key=lambda d: d.slot)


def _map_guest(data: VmData, prior: Guest | None) -> Guest | None:
    if data.guest is None and prior is None:
        return None
    telemetry = {
        "ram_used": data.guest.ram_used if data.guest else None,
        "ram_balloon_performed": data.guest.ram_balloon_performed if data.guest else None,
        "ram_balloon_requested": data.guest.ram_balloon_requested if data.guest else None,
    }
    # Customization inputs are never echoed by vm-get: carry them forward.
    base = prior if prior is not None else Guest()
    return base.model_copy(update=telemetry)


def to_state(data: VmData, prior: VirtualMachine) -> VirtualMachine:
    """Map a vm-get description onto prior state/config.

    Args:
        data: vm-get (or vms-create) result data
        prior: Current state or plan; supplies guest customization inputs

    Returns:
        A new VirtualMachine; prior is not modified

    Raises:
        MappingError: A required field is missing or negative
    """
    context: dict[str, Any] = {"vm_id": data.id if data.id is not None else prior.id}

    ints = {field: _require_int(getattr(data, field), label, context) for field, label in _REQUIRED_INTS}
    for field, label in _REQUIRED_STRINGS:
        if getattr(data, field) is None:
            raise MappingError(f"{label} is missing from the response", context)
    disks = map_disks(data.disks, context)

    update: dict[str, Any] = {
        "id": ints["id"],
        "name": data.name,
        "description": data.description,
        "cpus": ints["cpus"],
        "ram": bytes_to_mb(ints["ram"]),
        "cpu_priority": ints["cpu_priority"],
        "boot_media": ints["boot_media_id"],
        "vcpu_class": ints["vcpu_class"],
        "os_type": ints["os_type"],
        "os_profile": data.os_profile,
        "vdc_id": ints["vdc"],
        "pool_selector": data.pool,
        "node": ints["node"],
        "admin_status": ints["admin_status"],
        "create_completed": ints["create_completed"],
        "locked": ints["locked"],
        "status": ints["status"],
        "oper_status": ints["oper_status"],
        "uefi": data.uefi,
        "root_dataset": str(data.root_dataset) if data.root_dataset is not None else None,
        "root_dataset_name": data.root_dataset_name,
        "action": action_from_status(ints["oper_status"]),
        "guest": _map_guest(data, prior.guest),
        "disks": disks,
    }
    return prior.model_copy(update=update)


def from_description(data: VmData) -> VirtualMachine:
    """Build state from a description alone (no prior config to carry forward).

    Used by the vm_get data source and by import, where nothing but the id
    is known locally.
    """
    # Unvalidated seed: to_state() overwrites every required field or raises.
    seed = VirtualMachine.model_construct(guest=None, disks=[])
    return to_state(data, seed)
