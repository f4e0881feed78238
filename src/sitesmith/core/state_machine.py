from __future__ import annotations

from typing import Dict, List, Optional

IDLE = "idle"
AWAITING = "awaiting_plan_or_files"
CREATING = "creating"
STREAMING = "streaming"
COMPLETED = "completed"
FINALIZING = "finalizing"
ERROR = "error"
CANCELLED = "cancelled"

# Generation turn transitions; error and cancelled are reachable from every busy phase.
PHASE_TRANSITIONS: Dict[str, List[str]] = {
    IDLE: [AWAITING],
    AWAITING: [CREATING, FINALIZING, ERROR, CANCELLED],
    CREATING: [STREAMING, COMPLETED, CREATING, FINALIZING, ERROR, CANCELLED],
    STREAMING: [STREAMING, COMPLETED, CREATING, FINALIZING, ERROR, CANCELLED],
    COMPLETED: [CREATING, FINALIZING, ERROR, CANCELLED],
    FINALIZING: [IDLE, ERROR, CANCELLED],
    ERROR: [IDLE],
    CANCELLED: [IDLE],
}


def next_phase(current: str) -> Optional[str]:
    options = PHASE_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: str, target: str) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])


def is_busy(phase: str) -> bool:
    return phase not in (IDLE, ERROR, CANCELLED)
