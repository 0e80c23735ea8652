"""
apkpatch/core/fsm.py — Strict status state machine for a single pipeline step.

Thread-safe FSM with an explicit validated transition map, transition
history and structured logging. Terminal states have no exits, so a step
can never be reported twice.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from apkpatch.core.constants import StepStatus

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested status transition is not in the valid map.

    Args:
        title: Title of the step whose status was being changed.
        from_state: Current status at the time of the illegal attempt.
        to_state: Requested (invalid) target status.
    """

    def __init__(
        self,
        title: str,
        from_state: StepStatus,
        to_state: StepStatus,
    ) -> None:
        self.title = title
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value} "
            f"for step {title!r}"
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[StepStatus, list[StepStatus]] = {
    StepStatus.PENDING: [
        StepStatus.RUNNING,
        StepStatus.SKIPPED,     # skip predicate held
        StepStatus.FAILED,      # enabled or skip predicate raised
    ],
    StepStatus.RUNNING: [
        StepStatus.COMPLETED,
        StepStatus.FAILED,
        StepStatus.SKIPPED,     # action asked to be skipped with a reason
    ],
    StepStatus.COMPLETED: [],
    StepStatus.SKIPPED: [],
    StepStatus.FAILED: [],
}

TERMINAL_STATES: frozenset[StepStatus] = frozenset(
    state for state, targets in _VALID_TRANSITIONS.items() if not targets
)


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class StepStateMachine:
    """
    Status tracker for one step of one run.

    Enforces :data:`_VALID_TRANSITIONS`; illegal transitions raise
    :class:`InvalidTransitionError` immediately.

    Args:
        title: Step title, used in log lines and errors.
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        title: str,
        on_transition: Callable[[StepStatus, StepStatus, str], None] | None = None,
    ) -> None:
        self._title = title
        self._state: StepStatus = StepStatus.PENDING
        self._lock = threading.Lock()
        self._history: list[dict] = []
        self._external_callback = on_transition

    @property
    def current_state(self) -> StepStatus:
        """Return the current status (thread-safe read)."""
        with self._lock:
            return self._state

    @property
    def is_terminal(self) -> bool:
        """True once the step has completed, failed or been skipped."""
        return self.current_state in TERMINAL_STATES

    def transition(self, new_state: StepStatus, reason: str = "") -> None:
        """
        Attempt a validated status transition.

        Args:
            new_state: Target status.
            reason: Human-readable reason (skip reason, error text).

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        with self._lock:
            from_state = self._state
            if new_state not in _VALID_TRANSITIONS.get(from_state, []):
                raise InvalidTransitionError(self._title, from_state, new_state)
            self._state = new_state
            self._history.append({
                "from": from_state.value,
                "to": new_state.value,
                "reason": reason,
                "timestamp": time.time(),
            })

        logger.debug(
            "Step %r: %s → %s%s",
            self._title,
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Step status callback raised: %s", exc)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the transition records, oldest first.

        Each record has keys ``from``, ``to``, ``reason`` and ``timestamp``.
        """
        with self._lock:
            return list(self._history)

    def can_transition(self, target: StepStatus) -> bool:
        """Return True if ``target`` is reachable from the current status."""
        return target in _VALID_TRANSITIONS.get(self._state, [])

    def __repr__(self) -> str:
        return f"StepStateMachine(title={self._title!r}, state={self.current_state.value})"
