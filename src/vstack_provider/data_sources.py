"""Read-only data sources.

- vm_profiles(): OS type -> profile catalog from vm-profiles
- vm_get(): describe any VM by id, mapped without guest inputs

Neither reconciles anything, so neither takes the VM lock.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from vstack_provider.mapper import from_description
from vstack_provider.models import OsProfile, OsType, VirtualMachine

if TYPE_CHECKING:
    from vstack_provider.client import VStackClient


async def vm_profiles(client: VStackClient) -> list[OsType]:
    """List OS types and their profiles, sorted by OS type id."""
    catalog = await client.vm_profiles()
    os_types = [
        OsType(
            id=entry.id,
            name=entry.name,
            profiles=[
                OsProfile(
                    id=profile.id,
                    name=profile.name,
                    description=profile.description or "",
                    min_size=profile.min_size or 0,
                )
                for profile in entry.profiles
            ],
        )
        for entry in catalog.values()
    ]
    return sorted(os_types, key=lambda os_type: os_type.id)


async def vm_get(client: VStackClient, vm_id: int) -> VirtualMachine:
    """Describe a VM by id.

    Raises:
        ValueError: vm_id is not positive
        MappingError: The description failed validation
    """
    if vm_id <= 0:
        raise ValueError(f"Invalid VM id: {vm_id}")
    data = await client.vm_get(vm_id)
    return from_description(data)
