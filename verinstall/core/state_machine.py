"""Per-invocation install state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Strictly linear progress: no state is ever re-entered
- FAILED reachable from any non-terminal state, carrying a reason
- Every transition recorded in order
"""

from __future__ import annotations

import logging

from verinstall.core.errors import InvalidTransitionError
from verinstall.models.pipeline import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    PipelineState,
    StateTransition,
)

logger = logging.getLogger(__name__)


class InstallStateMachine:
    """Tracks one install invocation from LOADED to DONE or FAILED.

    Parameters
    ----------
    label:
        Used in log lines, typically ``"name version"``.
    """

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._state = PipelineState.LOADED
        self._history: list[StateTransition] = []
        self._visited: set[PipelineState] = {PipelineState.LOADED}

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Snapshot of transitions so far, oldest first."""
        return list(self._history)

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    @property
    def failure_reason(self) -> str | None:
        if self._state != PipelineState.FAILED:
            return None
        return self._history[-1].reason

    def get_available_transitions(self) -> set[PipelineState]:
        """Return the set of valid target states from the current state."""
        return set(VALID_TRANSITIONS.get(self._state, set()))

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self, target_state: PipelineState, *, reason: str | None = None
    ) -> StateTransition:
        """Move to *target_state*, recording the transition.

        Raises ``InvalidTransitionError`` if the move is not allowed or
        would re-enter a state already visited.
        """
        current = self._state
        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed or target_state in self._visited:
            raise InvalidTransitionError(
                f"Cannot transition {self._label or 'install'} from {current.value} "
                f"to {target_state.value}. Allowed: {sorted(s.value for s in allowed)}"
            )

        record = StateTransition(from_state=current, to_state=target_state, reason=reason)
        self._history.append(record)
        self._visited.add(target_state)
        self._state = target_state

        if target_state == PipelineState.FAILED:
            logger.debug("%s: %s -> failed (%s)", self._label, current.value, reason)
        else:
            logger.debug("%s: %s -> %s", self._label, current.value, target_state.value)
        return record

    def fail(self, reason: str) -> StateTransition:
        """Enter FAILED from the current non-terminal state."""
        return self.transition(PipelineState.FAILED, reason=reason)
