"""vStack JSON-RPC protocol models.

Each remote method has its own request-params model tagged with a
`method` literal (excluded from the serialized params), so payloads are
field-checked instead of being assembled as free-form dicts.  The generic
envelope exists only at the wire boundary (JsonRpcRequest/JsonRpcResponse).

Units on the wire: RAM and disk sizes are bytes.  Optional fields are
omitted from the payload when None (serialize with `exclude_none=True`).

Result codes arrive as either a number or its string form; they are
normalized to int at validation time before anything inspects them.
"""

from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vstack_provider.constants import JSONRPC_VERSION

# ============================================================================
# Envelope
# ============================================================================


def normalize_code(value: Any) -> int:
    """Normalize a result code that may be an int or a numeric string.

    Non-numeric strings and missing values normalize to 0 (not success).
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return 0
    return 0


class JsonRpcRequest(BaseModel):
    """Request envelope. A fresh id is generated per instance."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    method: str
    params: dict[str, Any] | None = None


class RpcErrorObject(BaseModel):
    code: int = 0
    message: str = ""


class RpcResult(BaseModel):
    """Domain result: status code, optional message, method-specific data."""

    code: int = 0
    message: str | None = None
    data: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> int:
        return normalize_code(v)

    @property
    def error_message(self) -> str:
        """Best human-readable message: data.message, then result.message."""
        if isinstance(self.data, dict) and self.data.get("message"):
            return str(self.data["message"])
        if self.message:
            return self.message
        return f"code={self.code}"


class JsonRpcResponse(BaseModel):
    id: str | None = None
    jsonrpc: str | None = None
    error: RpcErrorObject | None = None
    result: RpcResult | None = None


# ============================================================================
# Request Params
# ============================================================================


class RpcParams(BaseModel):
    """Base class for per-method params. `method` is the RPC name, not a param."""

    model_config = ConfigDict(populate_by_name=True)

    method: str = Field(exclude=True, description="RPC method name")

    def to_params(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthParams(RpcParams):
    method: Literal["auth"] = Field(default="auth", exclude=True)  # type: ignore[assignment]
    username: str
    password: str = Field(repr=False)


class VmGetParams(RpcParams):
    method: Literal["vm-get"] = Field(default="vm-get", exclude=True)  # type: ignore[assignment]
    id: int


class SectorSizePayload(BaseModel):
    logical: int
    physical: int


class DiskPayload(BaseModel):
    """Disk entry inside vms-create."""

    size: int = Field(description="Size in bytes")
    slot: int
    iops_limit: int | None = None
    mbps_limit: int | None = None
    label: str | None = None
    sector_size: SectorSizePayload | None = None


class GuestUserPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ssh_authorized_keys: list[str] | None = Field(default=None, alias="ssh-authorized-keys")
    password: str | None = Field(default=None, repr=False)


class ResolverPayload(BaseModel):
    name_server: list[str] | None = None
    search: str | None = None


class GuestPayload(BaseModel):
    """Sparse guest customization: only fields actually set are present."""

    hostname: str | None = None
    boot_cmds: list[str] | None = None
    run_cmds: list[str] | None = None
    ssh_password_auth: int | None = None
    resolver: ResolverPayload | None = None
    users: dict[str, GuestUserPayload] | None = None


class VmsCreateParams(RpcParams):
    method: Literal["vms-create"] = Field(default="vms-create", exclude=True)  # type: ignore[assignment]
    name: str
    cpus: int
    ram: int = Field(description="RAM in bytes")
    boot_media: int | None = None
    vcpu_class: int | None = None
    os_type: int | None = None
    os_profile: str
    vdc_id: int
    pool_selector: str | None = None
    description: str | None = None
    cpu_priority: int
    disks: list[DiskPayload] = Field(default_factory=list)
    guest: GuestPayload | None = None


class VmPatch(BaseModel):
    """Mutable VM fields for vm-set. Only changed fields are set."""

    name: str | None = None
    description: str | None = None
    cpus: int | None = None
    ram: int | None = Field(default=None, description="RAM in bytes")


class VmSetParams(RpcParams):
    method: Literal["vm-set"] = Field(default="vm-set", exclude=True)  # type: ignore[assignment]
    id: int
    vm_params: VmPatch


class VmActionParams(RpcParams):
    method: Literal["vms-restart", "vms-stop", "vms-start-stop"] = Field(exclude=True)  # type: ignore[assignment]
    id: int


class AddDiskParams(RpcParams):
    method: Literal["vms-add-disk"] = Field(default="vms-add-disk", exclude=True)  # type: ignore[assignment]
    vm_id: int
    size: int = Field(description="Size in bytes")
    slot: int
    label: str | None = None
    sector_size: SectorSizePayload
    iops_limit: int | None = None
    mbps_limit: int | None = None


class DiskResizeParams(RpcParams):
    method: Literal["vms-disk-resize"] = Field(default="vms-disk-resize", exclude=True)  # type: ignore[assignment]
    id: int
    disk_guid: str
    size: int = Field(description="New size in bytes")


class DiskRatelimitParams(RpcParams):
    """Both limits are always sent together; unset means 0 (unlimited)."""

    method: Literal["vm-ratelimit-disk"] = Field(default="vm-ratelimit-disk", exclude=True)  # type: ignore[assignment]
    vm_id: int
    disk_guid: str
    mbps_limit: int = 0
    iops_limit: int = 0


class DiskLabelParams(RpcParams):
    method: Literal["vm-disk-set-label"] = Field(default="vm-disk-set-label", exclude=True)  # type: ignore[assignment]
    vm_id: int
    guid: str
    label: str


class RemoveDiskParams(RpcParams):
    method: Literal["vm-remove-disk"] = Field(default="vm-remove-disk", exclude=True)  # type: ignore[assignment]
    vm_id: int
    disk_guid: str


class AddNicParams(RpcParams):
    method: Literal["vms-add-nic"] = Field(default="vms-add-nic", exclude=True)  # type: ignore[assignment]
    id: int = Field(description="VM id")
    network_id: int
    slot: int
    ratelimit_mbits: int | None = None
    address: str | None = None
    ip_guard: int | None = None


class RemoveNicParams(RpcParams):
    method: Literal["vm-remove-nic"] = Field(default="vm-remove-nic", exclude=True)  # type: ignore[assignment]
    vm_id: int
    port_id: int


class NicRatelimitParams(RpcParams):
    method: Literal["vm-ratelimit-nic"] = Field(default="vm-ratelimit-nic", exclude=True)  # type: ignore[assignment]
    vm_id: int
    port_id: int
    ratelimit_mbits: int = 0


class VmsRemoveParams(RpcParams):
    method: Literal["vms-remove"] = Field(default="vms-remove", exclude=True)  # type: ignore[assignment]
    id: int
    vdc_id: int


class VmProfilesParams(RpcParams):
    """vm-profiles takes no params; the envelope carries `"params": null`."""

    method: Literal["vm-profiles"] = Field(default="vm-profiles", exclude=True)  # type: ignore[assignment]

    def to_params(self) -> dict[str, Any] | None:  # type: ignore[override]
        return None


# ============================================================================
# Result Data
# ============================================================================


class SectorSizeData(BaseModel):
    logical: int = 0
    physical: int = 0


class DiskData(BaseModel):
    guid: str | None = None
    size: int | None = Field(default=None, description="Size in bytes")
    slot: int | None = None
    iops_limit: int | None = None
    mbps_limit: int | None = None
    label: str | None = None
    sector_size: SectorSizeData | None = None


class NetworkPortData(BaseModel):
    address: str | None = None
    ip_guard: int | None = None
    mac: str | None = None
    network_id: int | None = None
    port_id: int | None = None
    ratelimit_mbits: int | None = None
    slot: int | None = None


class GuestData(BaseModel):
    ram_used: int | None = None
    ram_balloon_performed: int | None = None
    ram_balloon_requested: int | None = None


class VmData(BaseModel):
    """vm-get / vms-create result data.

    Everything is optional here; presence and sign of required fields are
    checked by the mapper so a bad payload yields a MappingError that
    names the field.  Unknown fields (created, gc_id, hv_faults, ...) are
    ignored.
    """

    id: int | None = None
    name: str | None = None
    description: str | None = None
    cpus: int | None = None
    ram: int | None = Field(default=None, description="RAM in bytes")
    cpu_priority: int | None = None
    boot_media_id: int | None = None
    vcpu_class: int | None = None
    os_type: int | None = None
    os_profile: str | None = None
    vdc: int | None = None
    pool: str | None = None
    node: int | None = None
    admin_status: int | None = None
    create_completed: int | None = None
    locked: int | None = None
    status: int | None = None
    oper_status: int | None = None
    uefi: str | None = None
    root_dataset: str | int | None = None
    root_dataset_name: str | None = None
    disks: list[DiskData] | None = None
    network_ports: list[NetworkPortData] | None = None
    guest: GuestData | None = None


class AddDiskData(BaseModel):
    guid: str | None = None
    size: int | None = None
    slot: int | None = None
    label: str | None = None
    sector_size: SectorSizeData | None = None


class OsProfileData(BaseModel):
    id: int
    name: str
    description: str | None = None
    min_size: int | None = None


class OsTypeData(BaseModel):
    id: int
    name: str
    profiles: list[OsProfileData] = Field(default_factory=list)


class AuthData(BaseModel):
    cookie: dict[str, str] = Field(default_factory=dict)
