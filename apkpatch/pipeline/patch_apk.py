"""
apkpatch/pipeline/patch_apk.py — The APK patch pipeline.

Declares the ordered step list and runs it against a fresh
:class:`~apkpatch.pipeline.context.PatchContext`::

    download ─► decode ─► manifest ─► netsec config ─► pinning ─► [wait]
             ─► encode { AAPT2 │ AAPT fallback } ─► sign + copy to output

The output path is only written by the last step, after the signer has
finished successfully.
"""

from __future__ import annotations

import logging
import os
import shutil
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from apkpatch.core.config import ToolsConfig
from apkpatch.core.constants import C
from apkpatch.core.logger import RunJournal, get_journal
from apkpatch.pipeline.context import PatchContext
from apkpatch.pipeline.pause import KeySource, TerminalKeySource, wait_for_keypress
from apkpatch.pipeline.runner import PipelineRunner
from apkpatch.pipeline.steps import (
    EventCallback,
    RunResult,
    Step,
    StepHandle,
    SubPipeline,
)
from apkpatch.tasks.disable_certificate_pinning import disable_certificate_pinning
from apkpatch.tasks.modify_manifest import ManifestResult, modify_manifest
from apkpatch.tasks.modify_netsec_config import modify_netsec_config
from apkpatch.tools.download import download_tools

logger = logging.getLogger(__name__)


class RunLockedError(RuntimeError):
    """Raised when another run already owns the temporary directory."""


@dataclass
class PatchTasks:
    """The decoded-tree modifications, replaceable for tests."""

    modify_manifest: Callable[[Path], ManifestResult] = modify_manifest
    modify_netsec_config: Callable[[Path], Any] = modify_netsec_config
    disable_certificate_pinning: Callable[[Path, StepHandle], Any] = disable_certificate_pinning


@dataclass
class TaskOptions:
    """
    Everything one run needs.

    Attributes:
        input_path: APK to patch.
        output_path: Where the signed, patched APK is written.
        tmp_dir: Working directory owned by this run.
        apktool: Adapter with ``decode()`` and streaming ``encode()``.
        uber_apk_signer: Adapter with streaming ``sign()``.
        wait: Pause for manual edits before re-encoding.
        zipalign: Let the signer zipalign the APK.
        tools: When set, the jars are downloaded first if missing.
        key_source: Key source for the pause; defaults to the terminal.
        tasks: Decoded-tree modifications.
    """

    input_path: Path
    output_path: Path
    tmp_dir: Path
    apktool: Any
    uber_apk_signer: Any
    wait: bool = False
    zipalign: bool = True
    tools: Optional[ToolsConfig] = None
    key_source: Optional[KeySource] = None
    tasks: PatchTasks = field(default_factory=PatchTasks)


# ──────────────────────────────────────────────────────────────
# Step list
# ──────────────────────────────────────────────────────────────

def _publish(source: Path, dest: Path) -> None:
    """Copy ``source`` over ``dest`` so ``dest`` is either old or complete."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".part")
    try:
        shutil.copyfile(source, partial)
        os.replace(partial, dest)
    except OSError:
        partial.unlink(missing_ok=True)
        raise


def _encode_stage(options: TaskOptions, journal: RunJournal) -> SubPipeline:
    """AAPT2 first; AAPT only when AAPT2 failed."""

    def encode_aapt2(ctx: PatchContext, task: StepHandle) -> Iterator[str]:
        try:
            yield from options.apktool.encode(ctx.decode_dir, ctx.tmp_apk_path, True)
        except Exception as exc:  # noqa: BLE001
            journal.warn("encode", "aapt2_failed", {"error": str(exc)})
            ctx.fall_back_to_aapt = True
            task.skip(C.FALLBACK_REASON)

    def encode_aapt(ctx: PatchContext, _task: StepHandle) -> Iterator[str]:
        return options.apktool.encode(ctx.decode_dir, ctx.tmp_apk_path, False)

    return SubPipeline([
        Step(C.TITLE_ENCODE_AAPT2, encode_aapt2),
        Step(
            C.TITLE_ENCODE_AAPT,
            encode_aapt,
            skip=lambda ctx: not ctx.fall_back_to_aapt,
        ),
    ])


def build_steps(options: TaskOptions, journal: Optional[RunJournal] = None) -> list[Step]:
    """Return the ordered step list for one run of ``options``."""
    journal = journal if journal is not None else get_journal()
    tasks = options.tasks
    key_source = options.key_source or TerminalKeySource()

    def download(_ctx: PatchContext, _task: StepHandle) -> Iterator[str]:
        return download_tools(options.tools)

    def decode(ctx: PatchContext, _task: StepHandle) -> None:
        options.apktool.decode(options.input_path, ctx.decode_dir)

    def manifest(ctx: PatchContext, _task: StepHandle) -> ManifestResult:
        result = tasks.modify_manifest(ctx.manifest_path)
        ctx.nsc_name = result.nsc_name
        ctx.uses_app_bundle = result.uses_app_bundle
        return result

    def netsec(ctx: PatchContext, _task: StepHandle) -> Any:
        return tasks.modify_netsec_config(ctx.nsc_path)

    def pinning(ctx: PatchContext, task: StepHandle) -> Any:
        return tasks.disable_certificate_pinning(ctx.decode_dir, task)

    def sign(ctx: PatchContext, _task: StepHandle) -> Iterator[str]:
        yield from options.uber_apk_signer.sign([ctx.tmp_apk_path], zipalign=options.zipalign)
        _publish(ctx.tmp_apk_path, options.output_path)
        yield f"Copied to {options.output_path}"

    return [
        Step(C.TITLE_DOWNLOAD, download, enabled=lambda _: options.tools is not None),
        Step(C.TITLE_DECODE, decode),
        Step(C.TITLE_MANIFEST, manifest),
        Step(C.TITLE_NSC, netsec),
        Step(C.TITLE_PINNING, pinning),
        Step(C.TITLE_WAIT, wait_for_keypress(key_source), enabled=lambda _: options.wait),
        Step(C.TITLE_ENCODE, _encode_stage(options, journal)),
        Step(C.TITLE_SIGN, sign),
    ]


# ──────────────────────────────────────────────────────────────
# Run
# ──────────────────────────────────────────────────────────────

@contextmanager
def run_lock(tmp_dir: Path) -> Iterator[Path]:
    """
    Hold ``tmp_dir`` for the duration of one run.

    Raises:
        RunLockedError: If another run holds the lock file.
    """
    lock_path = tmp_dir / C.LOCK_FILE_NAME
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
    except FileExistsError as exc:
        raise RunLockedError(f"{tmp_dir} is already used by another run") from exc
    try:
        os.write(fd, str(os.getpid()).encode("ascii"))
        os.close(fd)
        yield lock_path
    finally:
        lock_path.unlink(missing_ok=True)


def patch_apk(
    options: TaskOptions,
    on_event: Optional[EventCallback] = None,
    journal: Optional[RunJournal] = None,
) -> RunResult:
    """
    Run the full pipeline for ``options``.

    Returns:
        The run result; its context is the run's :class:`PatchContext`.

    Raises:
        RunLockedError: If ``options.tmp_dir`` is in use by another run.
    """
    journal = journal if journal is not None else get_journal()
    tmp_dir = Path(options.tmp_dir)
    tmp_dir.mkdir(parents=True, exist_ok=True)

    with run_lock(tmp_dir):
        ctx = PatchContext.for_tmp_dir(tmp_dir)
        journal.info("patch", "run_options", {
            "input": str(options.input_path),
            "output": str(options.output_path),
            "tmp_dir": str(tmp_dir),
            "wait": options.wait,
        })
        runner = PipelineRunner(build_steps(options, journal), on_event=on_event, journal=journal)
        result = runner.run(ctx)

    if result.success:
        logger.info("Patched APK written to %s", options.output_path)
    return result
