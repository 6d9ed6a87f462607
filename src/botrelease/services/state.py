"""Pipeline state machine for the build -> package lifecycle."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from botrelease.errors import PipelineError
from botrelease.models import PipelineState

_TRANSITIONS = {
    PipelineState.BUILD_PENDING: {PipelineState.BUILDING, PipelineState.BUILD_FAILED},
    PipelineState.BUILDING: {PipelineState.BUILD_FAILED, PipelineState.BUILD_SUCCEEDED},
    PipelineState.BUILD_SUCCEEDED: {PipelineState.PACKAGING},
    PipelineState.PACKAGING: {PipelineState.PACKAGED, PipelineState.PACKAGING_FAILED},
    PipelineState.BUILD_FAILED: set(),
    PipelineState.PACKAGING_FAILED: set(),
    PipelineState.PACKAGED: set(),
}


class PipelineStateMachine:
    """Tracks where a single pipeline invocation is and refuses illegal moves."""

    TERMINAL_STATES = frozenset(state for state, targets in _TRANSITIONS.items() if not targets)

    def __init__(self, logger, on_transition=None):
        self.logger = logger
        self.on_transition = on_transition
        self.state = PipelineState.BUILD_PENDING
        self.history: List[Dict[str, Any]] = [
            {"state": self.state.value, "at": self._now(), "reason": None}
        ]

    @property
    def is_terminal(self) -> bool:
        return self.state in self.TERMINAL_STATES

    def can_transition(self, target: PipelineState) -> bool:
        return target in _TRANSITIONS[self.state]

    def transition(self, target: PipelineState, reason: Optional[str] = None):
        if not self.can_transition(target):
            raise PipelineError(
                f"Illegal pipeline transition: {self.state.value} -> {target.value}."
            )

        self.logger.debug("Pipeline state: %s -> %s", self.state.value, target.value)
        self.state = target
        entry = {"state": target.value, "at": self._now(), "reason": reason}
        self.history.append(entry)
        if self.on_transition is not None:
            self.on_transition(entry)

    def fail(self, reason: str):
        """Move to the failure state matching the current phase.

        Failing before or during the build counts as a build failure; failing
        once the build succeeded counts as a packaging failure.
        """
        if self.is_terminal:
            return

        if self.state == PipelineState.BUILD_SUCCEEDED:
            self.transition(PipelineState.PACKAGING)

        if self.state == PipelineState.PACKAGING:
            self.transition(PipelineState.PACKAGING_FAILED, reason)
        else:
            self.transition(PipelineState.BUILD_FAILED, reason)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
