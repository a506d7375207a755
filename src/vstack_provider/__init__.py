"""vstack-provider: declarative VM and NIC reconciliation for vStack.

Reconciles declared VM/disk/NIC configuration against live state in a
vStack virtualization platform over its JSON-RPC API.

Quick Start:
    ```python
    from vstack_provider import (
        Disk, Guest, NicController, ProviderConfig, VirtualMachine,
        VmController, VmLockRegistry, VStackClient,
    )

    plan = VirtualMachine(
        name="web-1",
        cpus=2,
        ram=2048,                 # MB
        os_profile="ubuntu-22.04",
        vdc_id=7,
        action="start",
        guest=Guest(hostname="web-1"),
        disks=[Disk(slot=1, size=20)],  # GB
    )

    async with VStackClient(ProviderConfig.from_settings()) as client:
        locks = VmLockRegistry()
        vms = VmController(client, locks)
        nics = NicController(client, locks)

        state = await vms.apply(plan, None)      # create
        state = await vms.read(state)            # refresh
        state = await vms.apply(plan, state)     # converge (no-op if unchanged)
    ```

The host owns persistence: every lifecycle call takes typed models and
returns the new state (or None when the resource is gone).
"""

from vstack_provider._logging import configure_logging
from vstack_provider.client import VStackClient
from vstack_provider.config import ProviderConfig
from vstack_provider.data_sources import vm_get, vm_profiles
from vstack_provider.disks import DiskReconciler
from vstack_provider.exceptions import (
    ApiError,
    AuthenticationError,
    ImmutableFieldError,
    ImportIdError,
    MappingError,
    PolicyError,
    ProtocolError,
    SectorSizeChangeError,
    TransportError,
    VStackError,
)
from vstack_provider.locks import VmLockRegistry
from vstack_provider.models import (
    Disk,
    Guest,
    GuestUser,
    NetworkPort,
    OsProfile,
    OsType,
    Resolver,
    SectorSize,
    VirtualMachine,
)
from vstack_provider.nic_controller import NicController
from vstack_provider.settings import Settings
from vstack_provider.status import VmAction, VmStatus
from vstack_provider.vm_controller import VmController

__all__ = [
    "ApiError",
    "AuthenticationError",
    "Disk",
    "DiskReconciler",
    "Guest",
    "GuestUser",
    "ImmutableFieldError",
    "ImportIdError",
    "MappingError",
    "NetworkPort",
    "NicController",
    "OsProfile",
    "OsType",
    "PolicyError",
    "ProtocolError",
    "ProviderConfig",
    "Resolver",
    "SectorSize",
    "SectorSizeChangeError",
    "Settings",
    "TransportError",
    "VStackClient",
    "VStackError",
    "VirtualMachine",
    "VmAction",
    "VmController",
    "VmLockRegistry",
    "VmStatus",
    "configure_logging",
    "vm_get",
    "vm_profiles",
]

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("vstack-provider")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"
