"""
tests/test_fsm.py — pytest unit tests for apkpatch.core.fsm.StepStateMachine.
"""

from __future__ import annotations

import pytest

from apkpatch.core.constants import StepStatus
from apkpatch.core.fsm import TERMINAL_STATES, InvalidTransitionError, StepStateMachine


@pytest.fixture()
def fsm() -> StepStateMachine:
    """Fresh step status machine in PENDING."""
    return StepStateMachine("Decoding APK file")


def test_starts_pending(fsm: StepStateMachine) -> None:
    assert fsm.current_state == StepStatus.PENDING
    assert not fsm.is_terminal


@pytest.mark.parametrize(
    "path",
    [
        [StepStatus.RUNNING, StepStatus.COMPLETED],
        [StepStatus.RUNNING, StepStatus.FAILED],
        [StepStatus.RUNNING, StepStatus.SKIPPED],
        [StepStatus.SKIPPED],
        [StepStatus.FAILED],
    ],
)
def test_valid_paths_end_terminal(fsm: StepStateMachine, path: list[StepStatus]) -> None:
    for state in path:
        fsm.transition(state)
    assert fsm.is_terminal
    assert [h["to"] for h in fsm.get_history()] == [s.value for s in path]


def test_cannot_complete_without_running(fsm: StepStateMachine) -> None:
    with pytest.raises(InvalidTransitionError) as info:
        fsm.transition(StepStatus.COMPLETED)
    assert info.value.from_state == StepStatus.PENDING
    assert "Decoding APK file" in str(info.value)


@pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
def test_terminal_states_have_no_exit(terminal: StepStatus) -> None:
    fsm = StepStateMachine("t")
    if terminal != StepStatus.SKIPPED:
        fsm.transition(StepStatus.RUNNING)
    fsm.transition(terminal)
    for target in StepStatus:
        assert not fsm.can_transition(target)
    with pytest.raises(InvalidTransitionError):
        fsm.transition(StepStatus.RUNNING)


def test_callback_receives_reason_and_errors_are_swallowed() -> None:
    calls: list[tuple] = []

    def callback(src, dst, reason):
        calls.append((src, dst, reason))
        raise RuntimeError("observer bug")

    fsm = StepStateMachine("t", on_transition=callback)
    fsm.transition(StepStatus.RUNNING)
    fsm.transition(StepStatus.SKIPPED, "Failed, falling back to AAPT...")

    assert calls[-1] == (StepStatus.RUNNING, StepStatus.SKIPPED, "Failed, falling back to AAPT...")
    assert fsm.current_state == StepStatus.SKIPPED
