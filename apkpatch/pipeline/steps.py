"""
apkpatch/pipeline/steps.py — Step model shared by the runner and the patch pipeline.

A :class:`Step` is a tagged variant: its ``action`` is either a leaf callable
``(ctx, task) -> outcome`` or a :class:`SubPipeline` of further steps that the
runner executes with identical semantics. Leaf outcomes:

- ``None`` → completed
- any other value → completed with that value (kept on the step record)
- an iterator of ``str`` → a stream of progress lines; exhausting it
  completes the step, an exception raised while iterating fails it
- an exception raised by the call → failed
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

from apkpatch.core.constants import StepStatus
from apkpatch.core.fsm import StepStateMachine

if TYPE_CHECKING:  # pragma: no cover - typing only
    from apkpatch.pipeline.runner import PipelineRunner


# ──────────────────────────────────────────────────────────────
# Step definitions
# ──────────────────────────────────────────────────────────────

Predicate = Callable[[Any], bool]
LeafAction = Callable[[Any, "StepHandle"], Any]


@dataclass
class SubPipeline:
    """Ordered list of steps used as the action of an enclosing step."""

    steps: list["Step"]


@dataclass
class Step:
    """
    One unit of pipeline work.

    Attributes:
        title: Human-readable title, shown in progress output and errors.
        action: Leaf callable or :class:`SubPipeline`.
        enabled: When present and false, the step is left out of the run
            entirely: no event, no record.
        skip: When present and true, the step is reported as skipped and its
            action never runs.
    """

    title: str
    action: Union[LeafAction, SubPipeline]
    enabled: Optional[Predicate] = None
    skip: Optional[Predicate] = None


# ──────────────────────────────────────────────────────────────
# Run-time records and events
# ──────────────────────────────────────────────────────────────

@dataclass
class PipelineEvent:
    """
    An event emitted by the runner that a reporter can observe.

    Attributes:
        kind: One of 'step_started', 'step_skipped', 'step_completed',
              'step_failed', 'progress', 'run_completed', 'run_failed'.
        title: Title of the step the event belongs to ('' for run events).
        payload: Progress line, skip reason, exception or run result.
        depth: Nesting level of the step (0 for top-level steps).
        timestamp: Monotonic time of event creation.
    """

    kind: str
    title: str = ""
    payload: object = None
    depth: int = 0
    timestamp: float = field(default_factory=time.monotonic)


EventCallback = Callable[[PipelineEvent], None]


@dataclass
class StepRecord:
    """What happened to one step during one run."""

    title: str
    depth: int
    parent: Optional[str] = None
    value: Any = None
    skip_reason: str = ""
    error: Optional[BaseException] = None
    output: list[str] = field(default_factory=list)
    elapsed_ms: float = 0.0
    state: StepStateMachine = field(init=False)

    def __post_init__(self) -> None:
        self.state = StepStateMachine(self.title)

    @property
    def status(self) -> StepStatus:
        return self.state.current_state


class StepHandle:
    """
    Handle passed to a leaf action while it runs.

    Args:
        runner: The runner executing the step.
        record: The record of the running step.
    """

    def __init__(self, runner: "PipelineRunner", record: StepRecord) -> None:
        self._runner = runner
        self._record = record

    def output(self, line: str) -> None:
        """Forward one progress line to the sink immediately."""
        self._record.output.append(line)
        self._runner._emit(PipelineEvent(
            "progress", title=self._record.title, payload=line, depth=self._record.depth,
        ))

    def skip(self, reason: str = "") -> None:
        """Report the step as skipped once its action returns."""
        self._record.skip_reason = reason or "skipped"


@dataclass
class RunResult:
    """
    Terminal result of one run.

    ``failed_step`` is the title of the top-level step that failed;
    ``failed_path`` lists every title from that step down to the innermost
    failing step of a sub-pipeline.
    """

    success: bool
    context: Any
    records: list[StepRecord] = field(default_factory=list)
    failed_step: Optional[str] = None
    failed_path: tuple[str, ...] = ()
    error: Optional[BaseException] = None
    elapsed_ms: float = 0.0

    def titles(self, status: Optional[StepStatus] = None, depth: Optional[int] = None) -> list[str]:
        """Titles of recorded steps, optionally filtered by status and depth."""
        return [
            r.title for r in self.records
            if (status is None or r.status == status)
            and (depth is None or r.depth == depth)
        ]

    def record(self, title: str) -> Optional[StepRecord]:
        """Return the record of the step titled ``title``, if it was part of the run."""
        for r in self.records:
            if r.title == title:
                return r
        return None
