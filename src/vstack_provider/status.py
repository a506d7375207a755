"""VM operational status codes and the action registry."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Final


class VmStatus(IntEnum):
    """Operational status codes reported by vm-get (`oper_status`)."""

    OFFLINE = 1
    STARTING = 2
    STARTED = 3
    START_FAILED = 4
    STOPPING = 5
    STOP_FAILED = 6
    CREATING = 7
    DELETING = 8
    DELETED = 9
    CREATED = 10
    SUSPENDED = 11
    SUSPENDING = 12
    SUSPEND_FAILED = 13
    RESUMING = 14
    RESUME_FAILED = 15
    CREATE_FAILED = 16
    DELETE_FAILED = 17


class VmAction(str, Enum):
    """Desired power action declared in configuration."""

    START = "start"
    STOP = "stop"


ACTION_METHODS: Final[dict[VmAction, str]] = {
    VmAction.START: "vms-restart",
    VmAction.STOP: "vms-stop",
}
"""Action name to RPC method."""


def is_running(oper_status: int | None) -> bool:
    """Only STARTED counts as running for stop/restart brackets."""
    return oper_status == VmStatus.STARTED


def is_offline(oper_status: int | None) -> bool:
    return oper_status == VmStatus.OFFLINE


def must_stop_before_removal(oper_status: int | None) -> bool:
    """Disk removal needs the VM halted unless it is OFFLINE.

    CREATED is excluded: the platform refuses to stop a VM that never ran.
    """
    return oper_status not in (VmStatus.OFFLINE, VmStatus.CREATED)


def action_from_status(oper_status: int | None) -> VmAction | None:
    """Derive the persisted action from observed status.

    STARTED maps to start; OFFLINE or CREATED maps to stop; anything else
    (transitional or failed states) yields None, meaning "leave as observed".
    """
    if oper_status == VmStatus.STARTED:
        return VmAction.START
    if oper_status in (VmStatus.OFFLINE, VmStatus.CREATED):
        return VmAction.STOP
    return None


def method_for_action(action: VmAction | str) -> str:
    """Resolve an action to its RPC method name.

    Raises:
        ValueError: Unknown action
    """
    return ACTION_METHODS[VmAction(action)]
