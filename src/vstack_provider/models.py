"""Configuration and state models for VMs, disks and NICs.

These are the host-facing shapes: sizes are in external units (RAM in MB,
disk size in GB).  Wire shapes with byte units live in protocol.py; the
mapper converts between the two.

The same model type serves as both plan (desired configuration) and state
(last persisted observation).  Read-only fields are None in a plan.
"""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

from vstack_provider.status import VmAction  # noqa: TC001 - Required at runtime for Pydantic

# ============================================================================
# Disks
# ============================================================================


class SectorSize(BaseModel):
    """Logical/physical sector size pair in bytes. Immutable once a disk exists."""

    model_config = ConfigDict(frozen=True)

    logical: int = Field(ge=0)
    physical: int = Field(ge=0)


class Disk(BaseModel):
    """A VM disk, keyed by slot for reconciliation.

    `sector_size=None` means "not specified"; it is default-filled before
    any comparison or payload is built, never treated as zero.
    """

    guid: str | None = Field(default=None, description="Remote-assigned GUID (read-only)")
    slot: int = Field(ge=1, description="Slot number, unique within the VM")
    size: int = Field(ge=0, description="Size in GB")
    iops_limit: int | None = Field(default=None, ge=0)
    mbps_limit: int | None = Field(default=None, ge=0)
    label: str | None = None
    sector_size: SectorSize | None = None


# ============================================================================
# Guest customization
# ============================================================================


class GuestUser(BaseModel):
    ssh_authorized_keys: list[str] = Field(default_factory=list)
    password: str | None = Field(default=None, repr=False)


class Resolver(BaseModel):
    name_server: list[str] = Field(default_factory=list)
    search: str | None = None


class Guest(BaseModel):
    """Guest OS customization inputs plus telemetry.

    vm-get never echoes the inputs back, so they are carried forward from
    the prior state on every read.  Only the ram_* telemetry is remote-owned.
    """

    hostname: str | None = None
    users: dict[str, GuestUser] = Field(default_factory=dict)
    ssh_password_auth: int | None = None
    resolver: Resolver | None = None
    boot_cmds: list[str] | None = None
    run_cmds: list[str] | None = None

    # Telemetry (read-only)
    ram_used: int | None = None
    ram_balloon_performed: int | None = None
    ram_balloon_requested: int | None = None


GUEST_INPUT_FIELDS: Final[tuple[str, ...]] = (
    "hostname",
    "users",
    "ssh_password_auth",
    "resolver",
    "boot_cmds",
    "run_cmds",
)
"""Guest fields supplied by configuration. All are replace-on-change."""


# ============================================================================
# Virtual machine
# ============================================================================


class VirtualMachine(BaseModel):
    """VM aggregate root: configuration inputs plus observed status fields.

    `action` is a transient directive.  After apply it is normalized to the
    observed power state (see status.action_from_status), never echoed.
    """

    id: int | None = Field(default=None, description="Remote-assigned VM id (set once)")
    name: str = Field(min_length=1)
    description: str | None = None
    cpus: int = Field(ge=1)
    ram: int = Field(ge=1, description="RAM in MB")
    cpu_priority: int | None = None
    boot_media: int | None = None
    vcpu_class: int | None = None
    os_type: int | None = None
    os_profile: str
    vdc_id: int = Field(ge=1)
    pool_selector: str | None = None
    node: int | None = None
    action: VmAction | None = None

    guest: Guest | None = None
    disks: list[Disk] = Field(default_factory=list)

    # Read-only status
    status: int | None = None
    admin_status: int | None = None
    oper_status: int | None = None
    uefi: str | None = None
    create_completed: int | None = None
    locked: int | None = None
    root_dataset: str | None = None
    root_dataset_name: str | None = None


VM_REPLACE_FIELDS: Final[tuple[str, ...]] = (
    "cpu_priority",
    "boot_media",
    "vcpu_class",
    "os_type",
    "os_profile",
    "vdc_id",
    "node",
    "pool_selector",
)
"""Top-level VM fields that can only change through destroy+recreate."""


# ============================================================================
# Network ports
# ============================================================================


class NetworkPort(BaseModel):
    """A NIC attached to a VM. Only ratelimit_mbits is mutable in place."""

    id: int | None = Field(default=None, description="Remote port id (read-only)")
    vm_id: int = Field(ge=0)
    network_id: int = Field(ge=0)
    slot: int = Field(ge=0)
    address: str | None = None
    mac: str | None = None
    ip_guard: int | None = None
    ratelimit_mbits: int | None = Field(default=None, ge=0)


NIC_REPLACE_FIELDS: Final[tuple[str, ...]] = (
    "vm_id",
    "network_id",
    "slot",
    "address",
    "mac",
    "ip_guard",
)
"""NIC fields that can only change through destroy+recreate."""


# ============================================================================
# OS profile catalog
# ============================================================================


class OsProfile(BaseModel):
    id: int
    name: str
    description: str = ""
    min_size: int = 0


class OsType(BaseModel):
    id: int
    name: str
    profiles: list[OsProfile] = Field(default_factory=list)


# ============================================================================
# Replace-on-change detection
# ============================================================================


def _changed(plan_value: Any, state_value: Any) -> bool:
    # None in a plan means "unset / computed": keep whatever state holds.
    return plan_value is not None and plan_value != state_value


def vm_replacement_fields(plan: VirtualMachine, state: VirtualMachine) -> list[str]:
    """Name the replace-on-change fields that differ between plan and state.

    Guest customization inputs are reported as `guest.<field>`.  They are
    only compared when state has recorded inputs; an imported VM has none
    (vm-get never returns them) and adopts the plan's on the next update.
    """
    changed = [f for f in VM_REPLACE_FIELDS if _changed(getattr(plan, f), getattr(state, f))]
    if plan.guest is not None and state.guest is not None and has_guest_inputs(state.guest):
        changed.extend(
            f"guest.{f}" for f in GUEST_INPUT_FIELDS if _changed(getattr(plan.guest, f), getattr(state.guest, f))
        )
    return changed


def has_guest_inputs(guest: Guest) -> bool:
    """Whether any customization input is recorded (telemetry ignored)."""
    return any(getattr(guest, f) for f in GUEST_INPUT_FIELDS)


def nic_replacement_fields(plan: NetworkPort, state: NetworkPort) -> list[str]:
    """Name the replace-on-change NIC fields that differ between plan and state."""
    return [f for f in NIC_REPLACE_FIELDS if _changed(getattr(plan, f), getattr(state, f))]
