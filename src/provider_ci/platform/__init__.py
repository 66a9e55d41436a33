from provider_ci.platform.cleanup import EMULATOR_ROLE, SERVICE_ROLE, CleanupGuard
from provider_ci.platform.commands import COMMAND_NOT_FOUND, CommandResult, CommandRunner, ToolRunner
from provider_ci.platform.slots import append_slot_line, discover_slot, strip_slot_lines
from provider_ci.platform.supervisor import (
    ManagedProcess,
    ProcessState,
    ProcessSupervisor,
    ReadinessProbe,
    find_by_pattern,
    pattern_probe,
    pid_alive,
    socket_probe,
)

__all__ = [
    "COMMAND_NOT_FOUND",
    "CleanupGuard",
    "CommandResult",
    "CommandRunner",
    "EMULATOR_ROLE",
    "ManagedProcess",
    "ProcessState",
    "ProcessSupervisor",
    "ReadinessProbe",
    "SERVICE_ROLE",
    "ToolRunner",
    "append_slot_line",
    "discover_slot",
    "find_by_pattern",
    "pattern_probe",
    "pid_alive",
    "socket_probe",
    "strip_slot_lines",
]
