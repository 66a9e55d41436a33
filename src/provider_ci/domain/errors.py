from __future__ import annotations


class HarnessError(RuntimeError):
    # Base error for every harness failure category.
    exit_code = 1


class UsageError(HarnessError):
    # Raised for malformed/missing CLI input; the run never starts.
    pass


class ProcessStartError(HarnessError):
    # Raised when a required child process fails to start or is not live after its wait.
    pass


class ProcessStateError(HarnessError):
    # Raised when a supervisor operation is called in the wrong process state.
    pass


class SignalDeliveryError(HarnessError):
    # Raised when a signal cannot be delivered because the target pid is stale.
    def __init__(self, role: str, pid: int | None, signal_name: str) -> None:
        super().__init__(f"cannot deliver {signal_name} to {role} (pid={pid}): process not found")
        self.role = role
        self.pid = pid
        self.signal_name = signal_name


class PhaseFailure(HarnessError):
    # Raised when a tool invocation for a phase returns a non-zero result.
    def __init__(self, phase: str, returncode: int) -> None:
        super().__init__(f"phase {phase} failed with exit code {returncode}")
        self.phase = phase
        self.returncode = returncode


class HarnessInterrupted(HarnessError):
    # Raised inside the guarded scope when SIGINT/SIGTERM reaches the orchestrator.
    def __init__(self, signum: int) -> None:
        super().__init__(f"interrupted by signal {signum}")
        self.signum = signum
        self.exit_code = 128 + signum


class SlotDiscoveryError(HarnessError):
    # Raised when no slot number can be read from the slot discovery tool output.
    pass
