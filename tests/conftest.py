"""Shared pytest fixtures for vstack-provider tests."""

import logging

import pytest

from tests.fake_vstack import FakeVStack
from vstack_provider.locks import VmLockRegistry
from vstack_provider.models import Disk, Guest, GuestUser, NetworkPort, Resolver, VirtualMachine
from vstack_provider.nic_controller import NicController
from vstack_provider.vm_controller import VmController

logger = logging.getLogger(__name__)


@pytest.fixture
def fake() -> FakeVStack:
    return FakeVStack()


@pytest.fixture
def locks() -> VmLockRegistry:
    return VmLockRegistry()


@pytest.fixture
def vms(fake: FakeVStack, locks: VmLockRegistry) -> VmController:
    return VmController(fake, locks)  # type: ignore[arg-type]


@pytest.fixture
def nics(fake: FakeVStack, locks: VmLockRegistry) -> NicController:
    return NicController(fake, locks)  # type: ignore[arg-type]


@pytest.fixture
def vm_plan() -> VirtualMachine:
    """A typical plan: running VM with two disks and guest customization."""
    return VirtualMachine(
        name="web-1",
        description="frontend",
        cpus=2,
        ram=2048,
        os_profile="ubuntu-22.04",
        vdc_id=7,
        action="start",
        guest=Guest(
            hostname="web-1",
            users={"ops": GuestUser(ssh_authorized_keys=["ssh-ed25519 AAAA ops"], password="hunter2")},
            resolver=Resolver(name_server=["1.1.1.1"], search="example.com"),
            boot_cmds=["echo boot", ""],
            run_cmds=["apt-get update"],
        ),
        disks=[
            Disk(slot=1, size=20, label="root"),
            Disk(slot=2, size=50, label="data", iops_limit=1000, mbps_limit=200),
        ],
    )


@pytest.fixture
def nic_plan() -> NetworkPort:
    return NetworkPort(vm_id=42, network_id=9, slot=1)
