from __future__ import annotations

from typing import Dict, List, Optional

# Stream session phases. "close" is terminal and reachable from every live phase.
INIT = "init"
OPEN = "open"
ANALYSIS = "analysis"
RESPONSE = "response"
CLOSE = "close"

PHASE_TRANSITIONS: Dict[str, List[str]] = {
    INIT: [OPEN],
    OPEN: [ANALYSIS, CLOSE],
    ANALYSIS: [RESPONSE, CLOSE],
    RESPONSE: [CLOSE],
    CLOSE: [],
}


def next_phase(current: str) -> Optional[str]:
    options = PHASE_TRANSITIONS.get(current, [])
    return options[0] if options else None


def is_valid_transition(current: str, target: str) -> bool:
    return target in PHASE_TRANSITIONS.get(current, [])


def is_terminal(phase: str) -> bool:
    return phase in PHASE_TRANSITIONS and not PHASE_TRANSITIONS[phase]
