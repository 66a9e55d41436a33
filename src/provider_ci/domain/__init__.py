from .errors import (
    HarnessError,
    HarnessInterrupted,
    PhaseFailure,
    ProcessStartError,
    ProcessStateError,
    SignalDeliveryError,
    SlotDiscoveryError,
    UsageError,
)
from .run import PROVIDER_TOKENS, STRESS_PHASES, Phase, Provider, TestRun

# Public domain exports keep imports explicit across layers.
__all__ = [
    "HarnessError",
    "HarnessInterrupted",
    "PROVIDER_TOKENS",
    "Phase",
    "PhaseFailure",
    "ProcessStartError",
    "ProcessStateError",
    "Provider",
    "STRESS_PHASES",
    "SignalDeliveryError",
    "SlotDiscoveryError",
    "TestRun",
    "UsageError",
]
