"""Tests for VmController lifecycle orchestration against FakeVStack."""

import asyncio

import pytest

from tests.fake_vstack import MB, FakeVStack, make_disk_data, make_vm_data
from vstack_provider.exceptions import ApiError, ImmutableFieldError, ImportIdError, SectorSizeChangeError
from vstack_provider.locks import VmLockRegistry
from vstack_provider.models import Disk, Guest, SectorSize, VirtualMachine
from vstack_provider.protocol import VmData
from vstack_provider.status import VmAction, VmStatus
from vstack_provider.vm_controller import VmController, parse_vm_import_id

# ============================================================================
# Create
# ============================================================================


class TestCreate:
    async def test_create_with_start(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)

        assert fake.mutating == ["vms-create", "vms-restart"]
        assert state.id == 100
        assert state.action is VmAction.START
        assert state.oper_status == VmStatus.STARTED
        assert state.ram == 2048
        assert [d.slot for d in state.disks] == [1, 2]
        assert all(d.guid for d in state.disks)

    async def test_create_with_stop_starts_first(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        """A freshly created VM must be started once before it can be stopped."""
        plan = vm_plan.model_copy(update={"action": VmAction.STOP})

        state = await vms.create(plan)

        assert fake.mutating == ["vms-create", "vms-restart", "vms-stop"]
        assert state.action is VmAction.STOP
        assert state.oper_status == VmStatus.OFFLINE

    async def test_create_without_action(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        plan = vm_plan.model_copy(update={"action": None})

        state = await vms.create(plan)

        assert fake.mutating == ["vms-create"]
        assert state.oper_status == VmStatus.CREATED
        assert state.action is VmAction.STOP

    async def test_create_payload(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        await vms.create(vm_plan)

        _, params = fake.calls[0]
        assert params["ram"] == 2048 * MB
        assert params["cpu_priority"] == 1
        assert params["guest"]["hostname"] == "web-1"
        assert params["guest"]["boot_cmds"] == ["echo boot"]
        assert params["guest"]["users"]["ops"]["ssh-authorized-keys"] == ["ssh-ed25519 AAAA ops"]
        assert all(d["sector_size"] == {"logical": 512, "physical": 4096} for d in params["disks"])

    async def test_guest_inputs_persisted(self, vms: VmController, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)
        assert state.guest == vm_plan.guest

    async def test_zero_id_rejected(self, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        class NoIdVStack(FakeVStack):
            async def vms_create(self, params):  # type: ignore[no-untyped-def]
                await super().vms_create(params)
                return VmData(id=0)

        vms = VmController(NoIdVStack())  # type: ignore[arg-type]
        with pytest.raises(ApiError, match="no VM id"):
            await vms.create(vm_plan)

    async def test_create_failure_propagates(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        fake.failures["vms-create"] = ApiError(
            "vms-create failed (code=2): quota exceeded", method="vms-create", code=2
        )
        with pytest.raises(ApiError, match="quota exceeded"):
            await vms.create(vm_plan)


# ============================================================================
# Read
# ============================================================================


class TestRead:
    async def test_read_refreshes_and_keeps_guest_inputs(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan)
        fake.vms[state.id] = fake.vms[state.id].model_copy(update={"cpus": 8})  # out-of-band change
        fake.reset_calls()

        refreshed = await vms.read(state)

        assert fake.methods == ["vm-get"]
        assert refreshed.cpus == 8
        assert refreshed.guest is not None
        assert refreshed.guest.hostname == "web-1"

    async def test_read_missing_vm_raises(self, vms: VmController, vm_plan: VirtualMachine) -> None:
        with pytest.raises(ApiError, match="not found"):
            await vms.read(vm_plan.model_copy(update={"id": 999}))

    async def test_read_requires_id(self, vms: VmController, vm_plan: VirtualMachine) -> None:
        with pytest.raises(ValueError, match="no valid id"):
            await vms.read(vm_plan)


# ============================================================================
# Update
# ============================================================================


class TestUpdate:
    async def test_idempotent(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        """Re-applying a converged plan issues only reads."""
        state = await vms.create(vm_plan)
        fake.reset_calls()

        state = await vms.update(vm_plan, state)
        state = await vms.update(vm_plan, state)

        assert fake.mutating == []
        assert set(fake.methods) == {"vm-get"}

    async def test_patch_only_changed_fields(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        plan = vm_plan.model_copy(update={"ram": 4096, "name": "web-2"})
        state = await vms.update(plan, state)

        assert fake.mutating == ["vm-set"]
        _, params = next(call for call in fake.calls if call[0] == "vm-set")
        assert params["vm_params"] == {"name": "web-2", "ram": 4096 * MB}
        assert state.ram == 4096
        assert state.name == "web-2"

    async def test_description_cleared(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        await vms.update(vm_plan.model_copy(update={"description": None}), state)

        _, params = next(call for call in fake.calls if call[0] == "vm-set")
        assert params["vm_params"] == {"description": ""}

    async def test_stop_action(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        state = await vms.update(vm_plan.model_copy(update={"action": VmAction.STOP}), state)

        assert fake.mutating == ["vms-stop"]
        assert state.action is VmAction.STOP

    async def test_stop_on_never_started_vm(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan.model_copy(update={"action": None}))
        fake.reset_calls()

        await vms.update(vm_plan.model_copy(update={"action": VmAction.STOP}), state)

        assert fake.mutating == ["vms-restart", "vms-stop"]

    async def test_disk_changes(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        """Disks reconcile first; removal on a running VM is bracketed."""
        state = await vms.create(vm_plan)
        fake.reset_calls()

        plan = vm_plan.model_copy(update={"disks": [Disk(slot=1, size=40, label="root"), Disk(slot=3, size=5)]})
        state = await vms.update(plan, state)

        assert fake.mutating == ["vms-disk-resize", "vms-add-disk", "vms-stop", "vm-remove-disk", "vms-restart"]
        assert [(d.slot, d.size) for d in state.disks] == [(1, 40), (3, 5)]

    async def test_disk_error_aborts_update(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()
        disks = [Disk(slot=1, size=20, sector_size=SectorSize(logical=4096, physical=4096))]

        with pytest.raises(SectorSizeChangeError):
            await vms.update(vm_plan.model_copy(update={"disks": disks, "cpus": 4}), state)

        assert fake.calls == []

    @pytest.mark.parametrize(
        ("field", "value"),
        [("os_profile", "debian-12"), ("vdc_id", 99), ("pool_selector", "fast"), ("cpu_priority", 3)],
    )
    async def test_immutable_field_rejected(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine, field: str, value: object
    ) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        with pytest.raises(ImmutableFieldError, match=field):
            await vms.update(vm_plan.model_copy(update={field: value}), state)

        assert fake.calls == []

    async def test_guest_change_rejected(self, vms: VmController, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)
        assert vm_plan.guest is not None
        plan = vm_plan.model_copy(update={"guest": vm_plan.guest.model_copy(update={"hostname": "other"})})

        with pytest.raises(ImmutableFieldError, match="guest.hostname"):
            await vms.update(plan, state)

    async def test_concurrent_updates_serialized(self, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        """Two updates on one VM never interleave their stop/mutate/restart sequences."""
        vms = VmController(fake, VmLockRegistry())  # type: ignore[arg-type]
        state = await vms.create(vm_plan)
        fake.reset_calls()

        plan_a = vm_plan.model_copy(update={"disks": [vm_plan.disks[0]]})
        plan_b = vm_plan.model_copy(update={"disks": [vm_plan.disks[0]], "cpus": 4})
        await asyncio.gather(vms.update(plan_a, state), vms.update(plan_b, state))

        sequence = fake.mutating
        first_stop = sequence.index("vms-stop")
        assert sequence[first_stop : first_stop + 3] == ["vms-stop", "vm-remove-disk", "vms-restart"]
        rest = sequence[first_stop + 3 :]
        # The second update saw the same prior state: it tries the same removal
        # only after the first update has fully finished its bracket.
        assert rest[:2] == ["vms-stop", "vm-remove-disk"]


# ============================================================================
# Delete / Import / Apply
# ============================================================================


class TestDelete:
    async def test_delete_running_stops_first(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        await vms.delete(state)

        assert fake.mutating == ["vms-stop", "vms-remove"]
        assert fake.calls[-1] == ("vms-remove", {"id": state.id, "vdc_id": 7})
        assert state.id not in fake.vms

    async def test_delete_stopped_vm(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan.model_copy(update={"action": VmAction.STOP}))
        fake.reset_calls()

        await vms.delete(state)

        assert fake.mutating == ["vms-remove"]


class TestImport:
    def test_parse(self) -> None:
        assert parse_vm_import_id("42") == 42
        assert parse_vm_import_id(" 7 ") == 7

    @pytest.mark.parametrize("raw", ["abc", "", "0", "-3", "42/7"])
    def test_parse_rejects(self, raw: str) -> None:
        with pytest.raises(ImportIdError, match="positive integer"):
            parse_vm_import_id(raw)

    async def test_import_then_read(self, vms: VmController, fake: FakeVStack) -> None:
        fake.seed(make_vm_data(id=42, disks=[make_disk_data(1, 10)]))

        seeded = vms.import_state("42")
        assert seeded.id == 42
        state = await vms.read(seeded)

        assert state.name == "web-1"
        assert state.ram == 2048
        assert [d.slot for d in state.disks] == [1]
        assert state.action is VmAction.START

    async def test_imported_vm_adopts_plan_guest(self, vms: VmController, fake: FakeVStack) -> None:
        fake.seed(make_vm_data(id=42, disks=[make_disk_data(1, 10)]))
        state = await vms.read(vms.import_state("42"))
        fake.reset_calls()
        plan = VirtualMachine(
            name="web-1",
            cpus=2,
            ram=2048,
            os_profile="ubuntu-22.04",
            vdc_id=7,
            guest=Guest(hostname="web-1"),
            disks=[Disk(slot=1, size=10, label="")],
        )

        state = await vms.apply(plan, state)

        assert fake.mutating == []
        assert state.guest is not None
        assert state.guest.hostname == "web-1"


class TestApply:
    async def test_creates_without_state(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        await vms.apply(vm_plan, None)
        assert fake.mutating[0] == "vms-create"

    async def test_replaces_on_immutable_change(
        self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine
    ) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        new_state = await vms.apply(vm_plan.model_copy(update={"os_profile": "debian-12"}), state)

        assert fake.mutating == ["vms-stop", "vms-remove", "vms-create", "vms-restart"]
        assert new_state.id != state.id
        assert new_state.os_profile == "debian-12"

    async def test_updates_in_place(self, vms: VmController, fake: FakeVStack, vm_plan: VirtualMachine) -> None:
        state = await vms.create(vm_plan)
        fake.reset_calls()

        await vms.apply(vm_plan.model_copy(update={"cpus": 4}), state)

        assert fake.mutating == ["vm-set"]
