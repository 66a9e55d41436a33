from .sequencer import PhaseSequencer, PlannedPhase

__all__ = ["PhaseSequencer", "PlannedPhase"]
