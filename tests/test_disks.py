"""Tests for the disk reconciliation engine.

De-mocked: runs against FakeVStack, which refuses disk removal while the
VM is running, so a missing stop/restart bracket fails the test.
"""

import asyncio

import pytest
from hypothesis import given, settings
from hypothesis.strategies import integers

from tests.fake_vstack import GB, FakeVStack, make_disk_data, make_vm_data
from vstack_provider.disks import DiskReconciler, check_sector_size, diff_disks
from vstack_provider.exceptions import ApiError, PolicyError, SectorSizeChangeError
from vstack_provider.models import Disk, SectorSize
from vstack_provider.status import VmStatus

VM_ID = 42

# ============================================================================
# Test Helpers
# ============================================================================


def _observed(*disks: tuple[int, int]) -> list[Disk]:
    """State disks as the mapper produces them: slot, size GB, default sector size."""
    return [
        Disk(
            guid=f"disk-{slot}",
            slot=slot,
            size=size,
            iops_limit=0,
            mbps_limit=0,
            label="",
            sector_size=SectorSize(logical=512, physical=4096),
        )
        for slot, size in disks
    ]


def _seed(fake: FakeVStack, *disks: tuple[int, int], running: bool = True) -> None:
    status = VmStatus.STARTED if running else VmStatus.OFFLINE
    fake.seed(
        make_vm_data(
            id=VM_ID,
            oper_status=int(status),
            disks=[make_disk_data(slot, size) for slot, size in disks],
        )
    )


# ============================================================================
# Diff
# ============================================================================


class TestDiffDisks:
    def test_partition_by_slot(self) -> None:
        diff = diff_disks([Disk(slot=1, size=1), Disk(slot=2, size=1)], _observed((1, 1), (3, 1)))
        assert [(want.slot, have.slot) for want, have in diff.updates] == [(1, 1)]
        assert [d.slot for d in diff.additions] == [2]
        assert [d.slot for d in diff.removals] == [3]

    def test_empty(self) -> None:
        assert diff_disks([], []).empty

    def test_duplicate_slot_rejected(self) -> None:
        with pytest.raises(PolicyError, match="Duplicate disk slot 1"):
            diff_disks([Disk(slot=1, size=1), Disk(slot=1, size=2)], [])


class TestCheckSectorSize:
    def test_unspecified_plan_matches_default_state(self) -> None:
        check_sector_size(Disk(slot=1, size=1), _observed((1, 1))[0], VM_ID)

    def test_absent_state_treated_as_default(self) -> None:
        check_sector_size(Disk(slot=1, size=1), Disk(slot=1, size=1, guid="g"), VM_ID)

    def test_change_rejected_with_slot_in_message(self) -> None:
        plan = Disk(slot=4, size=1, sector_size=SectorSize(logical=4096, physical=4096))
        with pytest.raises(SectorSizeChangeError, match="slot 4") as exc_info:
            check_sector_size(plan, _observed((4, 1))[0], VM_ID)
        assert "remove the disk and add a new one" in exc_info.value.message
        assert exc_info.value.context == {
            "vm_id": VM_ID,
            "slot": 4,
            "planned": {"logical": 4096, "physical": 4096},
            "observed": {"logical": 512, "physical": 4096},
        }


# ============================================================================
# Reconcile
# ============================================================================


class TestReconcile:
    """End-to-end disk reconciliation against FakeVStack."""

    async def test_mixed_scenario_running_vm(self, fake: FakeVStack) -> None:
        """Plan {1,2} vs state {1,3}: keep 1, add 2, remove 3 inside a stop/restart bracket."""
        _seed(fake, (1, 10), (3, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        plan = [Disk(slot=1, size=10, label=""), Disk(slot=2, size=5)]
        await engine.reconcile(VM_ID, plan, _observed((1, 10), (3, 10)), VmStatus.STARTED)

        assert fake.methods == ["vms-add-disk", "vms-stop", "vm-remove-disk", "vms-restart"]
        _, add = fake.calls[0]
        assert add["slot"] == 2
        assert add["size"] == 5 * GB
        assert add["sector_size"] == {"logical": 512, "physical": 4096}
        assert fake.calls[2][1]["disk_guid"] == "disk-3"
        assert {d.slot for d in fake.vms[VM_ID].disks or []} == {1, 2}
        assert fake.vms[VM_ID].oper_status == VmStatus.STARTED

    async def test_removal_on_stopped_vm_has_no_bracket(self, fake: FakeVStack) -> None:
        _seed(fake, (1, 10), (3, 10), running=False)
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10), (3, 10)), VmStatus.OFFLINE)

        assert fake.methods == ["vm-remove-disk"]

    async def test_multiple_removals_share_one_bracket(self, fake: FakeVStack) -> None:
        _seed(fake, (1, 10), (2, 10), (3, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10), (2, 10), (3, 10)), VmStatus.STARTED)

        assert fake.methods == ["vms-stop", "vm-remove-disk", "vm-remove-disk", "vms-restart"]

    @pytest.mark.parametrize("status", [VmStatus.STARTING, VmStatus.SUSPENDED, VmStatus.STOP_FAILED])
    async def test_removal_stops_vm_in_transitional_status(self, fake: FakeVStack, status: VmStatus) -> None:
        """Any status but OFFLINE gets a stop first; only a running VM is restarted."""
        fake.seed(make_vm_data(id=VM_ID, oper_status=int(status), disks=[make_disk_data(1, 10), make_disk_data(3, 10)]))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10), (3, 10)), status)

        assert fake.mutating[0] == "vms-stop"
        assert fake.mutating == ["vms-stop", "vm-remove-disk"]
        assert fake.vms[VM_ID].oper_status == VmStatus.OFFLINE

    async def test_removal_on_created_vm_skips_stop(self, fake: FakeVStack) -> None:
        fake.seed(
            make_vm_data(
                id=VM_ID,
                oper_status=int(VmStatus.CREATED),
                disks=[make_disk_data(1, 10), make_disk_data(3, 10)],
            )
        )
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10), (3, 10)), VmStatus.CREATED)

        assert fake.mutating == ["vm-remove-disk"]

    async def test_sector_size_change_issues_no_calls(self, fake: FakeVStack) -> None:
        """A sector size change is rejected before any remote call, including other slots."""
        _seed(fake, (1, 10), (2, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]
        plan = [
            Disk(slot=1, size=99, label="grown"),
            Disk(slot=2, size=10, sector_size=SectorSize(logical=4096, physical=4096)),
            Disk(slot=3, size=1),
        ]

        with pytest.raises(SectorSizeChangeError, match="slot 2"):
            await engine.reconcile(VM_ID, plan, _observed((1, 10), (2, 10)), VmStatus.STARTED)

        assert fake.calls == []

    async def test_grow_relabel_and_ratelimit(self, fake: FakeVStack) -> None:
        _seed(fake, (1, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]
        plan = [Disk(slot=1, size=15, label="data", iops_limit=500, mbps_limit=100)]

        await engine.reconcile(VM_ID, plan, _observed((1, 10)), VmStatus.STARTED)

        assert fake.methods == ["vms-disk-resize", "vm-ratelimit-disk", "vm-disk-set-label"]
        assert fake.calls[0][1]["size"] == 15 * GB
        assert fake.calls[1][1] == {"vm_id": VM_ID, "disk_guid": "disk-1", "mbps_limit": 100, "iops_limit": 500}
        assert fake.calls[2][1]["label"] == "data"

    async def test_ratelimit_sends_both_limits(self, fake: FakeVStack) -> None:
        """Changing one limit still carries the other's current value."""
        _seed(fake, (1, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]
        observed = [_observed((1, 10))[0].model_copy(update={"iops_limit": 300, "mbps_limit": 50})]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10, iops_limit=300, mbps_limit=80)], observed, None)

        assert fake.calls == [
            ("vm-ratelimit-disk", {"vm_id": VM_ID, "disk_guid": "disk-1", "mbps_limit": 80, "iops_limit": 300})
        ]

    async def test_unset_limits_match_zero(self, fake: FakeVStack) -> None:
        """Unset limits in plan equal the platform's 0: no call."""
        _seed(fake, (1, 10))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10)), VmStatus.STARTED)

        assert fake.calls == []

    @given(planned=integers(min_value=1, max_value=500), extra=integers(min_value=0, max_value=500))
    @settings(max_examples=50)
    def test_grow_only(self, planned: int, extra: int) -> None:
        """A planned size <= observed size never issues a resize."""
        fake = FakeVStack()
        observed_size = planned + extra
        _seed(fake, (1, observed_size))
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        asyncio.run(
            engine.reconcile(VM_ID, [Disk(slot=1, size=planned)], _observed((1, observed_size)), VmStatus.STARTED)
        )

        assert "vms-disk-resize" not in fake.methods

    async def test_failure_aborts_and_names_slot(self, fake: FakeVStack) -> None:
        _seed(fake, (1, 10))
        fake.failures["vms-add-disk"] = ApiError("vms-add-disk failed (code=0): no space", method="vms-add-disk")
        engine = DiskReconciler(fake)  # type: ignore[arg-type]
        plan = [Disk(slot=1, size=10), Disk(slot=2, size=5), Disk(slot=3, size=5)]

        with pytest.raises(ApiError, match="no space") as exc_info:
            await engine.reconcile(VM_ID, plan, _observed((1, 10)), VmStatus.STARTED)

        assert exc_info.value.context["slot"] == 2
        assert exc_info.value.context["operation"] == "add"
        assert fake.methods == ["vms-add-disk"]

    async def test_failed_removal_leaves_vm_stopped(self, fake: FakeVStack) -> None:
        """No compensating restart: the next apply converges instead."""
        _seed(fake, (1, 10), (2, 10))
        fake.failures["vm-remove-disk"] = ApiError("vm-remove-disk failed (code=0): busy", method="vm-remove-disk")
        engine = DiskReconciler(fake)  # type: ignore[arg-type]

        with pytest.raises(ApiError, match="busy"):
            await engine.reconcile(VM_ID, [Disk(slot=1, size=10)], _observed((1, 10), (2, 10)), VmStatus.STARTED)

        assert fake.methods == ["vms-stop", "vm-remove-disk"]
