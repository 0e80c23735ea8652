"""
apkpatch/pipeline/runner.py — Sequential step runner.

Executes an ordered list of :class:`~apkpatch.pipeline.steps.Step` against one
shared context, in declared order, one at a time::

    enabled? ─► skip? ─► action ─► (progress lines)* ─► completed | skipped | failed

The first failure aborts the run. Nothing is rolled back: whatever earlier
steps wrote to disk stays there for inspection.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterator
from typing import Any, Optional, Sequence

from apkpatch.core.constants import StepStatus
from apkpatch.core.logger import RunJournal, get_journal
from apkpatch.pipeline.steps import (
    EventCallback,
    PipelineEvent,
    RunResult,
    Step,
    StepHandle,
    StepRecord,
    SubPipeline,
)

logger = logging.getLogger(__name__)


class StepFailedError(RuntimeError):
    """
    Carries a step failure out through enclosing sub-pipelines.

    Args:
        path: Step titles from the outermost to the innermost failing step.
        cause: The exception raised by the failing action.
    """

    def __init__(self, path: tuple[str, ...], cause: BaseException) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"{' › '.join(path)}: {cause}")


class PipelineRunner:
    """
    Runs steps strictly in order against a shared context.

    Args:
        steps: Ordered top-level steps.
        on_event: Optional sink receiving every :class:`PipelineEvent`.
        journal: Run journal; defaults to the process-wide singleton.
    """

    def __init__(
        self,
        steps: Sequence[Step],
        on_event: Optional[EventCallback] = None,
        journal: Optional[RunJournal] = None,
    ) -> None:
        self._steps = list(steps)
        self._on_event = on_event
        self._journal = journal if journal is not None else get_journal()
        self._records: list[StepRecord] = []

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def run(self, ctx: Any) -> RunResult:
        """
        Execute every step against ``ctx``.

        Returns:
            A successful :class:`RunResult` carrying ``ctx``, or a failed one
            naming the failing step and its exception.
        """
        self._records = []
        t_start = time.perf_counter()
        self._journal.info("runner", "run_started", {
            "steps": [s.title for s in self._steps],
        })

        try:
            self._run_steps(self._steps, ctx, depth=0, path=())
        except StepFailedError as exc:
            elapsed_ms = (time.perf_counter() - t_start) * 1_000.0
            result = RunResult(
                success=False,
                context=ctx,
                records=list(self._records),
                failed_step=exc.path[0],
                failed_path=exc.path,
                error=exc.cause,
                elapsed_ms=elapsed_ms,
            )
            self._journal.error("runner", "run_failed", {
                "step": exc.path[0],
                "path": list(exc.path),
                "error": repr(exc.cause),
            })
            logger.error("Run failed at %r: %s", " › ".join(exc.path), exc.cause)
            self._emit(PipelineEvent("run_failed", payload=result))
            return result

        elapsed_ms = (time.perf_counter() - t_start) * 1_000.0
        result = RunResult(
            success=True,
            context=ctx,
            records=list(self._records),
            elapsed_ms=elapsed_ms,
        )
        self._journal.perf("runner", "run_completed", elapsed_ms, {
            "steps": len(result.titles(depth=0)),
        })
        self._emit(PipelineEvent("run_completed", payload=result))
        return result

    # ──────────────────────────────────────────
    # Execution
    # ──────────────────────────────────────────

    def _run_steps(
        self,
        steps: Sequence[Step],
        ctx: Any,
        depth: int,
        path: tuple[str, ...],
    ) -> None:
        for step in steps:
            self._run_step(step, ctx, depth, path)

    def _run_step(self, step: Step, ctx: Any, depth: int, path: tuple[str, ...]) -> None:
        step_path = path + (step.title,)
        t_start = time.perf_counter()
        try:
            enabled = step.enabled is None or step.enabled(ctx)
            skipped = enabled and step.skip is not None and step.skip(ctx)
        except Exception as exc:  # noqa: BLE001
            record = StepRecord(step.title, depth, parent=path[-1] if path else None)
            self._records.append(record)
            self._fail(record, exc, t_start)
            raise StepFailedError(step_path, exc) from exc

        if not enabled:
            logger.debug("Step %r disabled, left out of the run", step.title)
            return

        record = StepRecord(step.title, depth, parent=path[-1] if path else None)
        self._records.append(record)

        if skipped:
            record.state.transition(StepStatus.SKIPPED)
            self._journal.info("runner", "step_skipped", {"title": step.title})
            self._emit(PipelineEvent("step_skipped", title=step.title, depth=depth))
            return

        record.state.transition(StepStatus.RUNNING)
        self._journal.info("runner", "step_started", {"title": step.title, "depth": depth})
        self._emit(PipelineEvent("step_started", title=step.title, depth=depth))

        task = StepHandle(self, record)
        t_start = time.perf_counter()
        try:
            if isinstance(step.action, SubPipeline):
                self._run_steps(step.action.steps, ctx, depth + 1, step_path)
            else:
                outcome = step.action(ctx, task)
                if isinstance(outcome, Iterator):
                    for line in outcome:
                        task.output(line)
                else:
                    record.value = outcome
        except StepFailedError as exc:
            self._fail(record, exc.cause, t_start)
            raise
        except Exception as exc:  # noqa: BLE001
            self._fail(record, exc, t_start)
            raise StepFailedError(step_path, exc) from exc

        record.elapsed_ms = (time.perf_counter() - t_start) * 1_000.0
        if record.skip_reason:
            record.state.transition(StepStatus.SKIPPED, record.skip_reason)
            self._journal.perf("runner", "step_skipped", record.elapsed_ms, {
                "title": step.title,
                "reason": record.skip_reason,
            })
            self._emit(PipelineEvent(
                "step_skipped", title=step.title, payload=record.skip_reason, depth=depth,
            ))
            return

        record.state.transition(StepStatus.COMPLETED)
        self._journal.perf("runner", "step_completed", record.elapsed_ms, {"title": step.title})
        self._emit(PipelineEvent(
            "step_completed", title=step.title, payload=record.value, depth=depth,
        ))

    def _fail(self, record: StepRecord, error: BaseException, t_start: float) -> None:
        record.error = error
        record.elapsed_ms = (time.perf_counter() - t_start) * 1_000.0
        record.state.transition(StepStatus.FAILED, str(error))
        self._journal.perf("runner", "step_failed", record.elapsed_ms, {
            "title": record.title,
            "error": repr(error),
        })
        self._emit(PipelineEvent(
            "step_failed", title=record.title, payload=error, depth=record.depth,
        ))

    # ──────────────────────────────────────────
    # Helpers
    # ──────────────────────────────────────────

    def _emit(self, event: PipelineEvent) -> None:
        """
        Invoke the event sink (swallows sink errors so a broken reporter
        never fails a step).
        """
        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Event callback raised: %s", exc)
