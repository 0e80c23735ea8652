"""
apkpatch/main.py — apkpatch command-line entry point.

Parses CLI args, loads configuration, runs pre-flight checks, and drives the
patch pipeline while printing every step as it happens.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import signal
import sys
import tempfile
from pathlib import Path
from typing import Optional, Sequence

from apkpatch import __version__


# ──────────────────────────────────────────────────────────────
# Argument parsing
# ──────────────────────────────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="apkpatch",
        description="Patch an Android APK so its HTTPS traffic can be inspected",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("input", help="Path to the APK to patch")
    p.add_argument(
        "-o", "--output",
        default=None,
        help="Patched APK path (default: <input>-patched.apk next to the input)",
    )
    p.add_argument(
        "--wait",
        action="store_true",
        default=None,
        help="Pause after patching so you can edit the decoded files by hand",
    )
    p.add_argument("--config", default=None, help="Path to apkpatch.yaml")
    p.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARN"],
        default=None,
        help="Minimum log level for stderr output (default: from config)",
    )
    p.add_argument(
        "--keep-tmp-dir",
        action="store_true",
        default=None,
        help="Keep the temporary directory after a successful run",
    )
    p.add_argument(
        "--skip-download",
        action="store_true",
        help="Do not download missing tool jars",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def _config_overrides(args: argparse.Namespace) -> dict:
    overrides: dict = {"pipeline": {}, "logging": {}}
    if args.wait is not None:
        overrides["pipeline"]["wait"] = True
    if args.keep_tmp_dir is not None:
        overrides["pipeline"]["keep_tmp_dir"] = True
    if args.log_level is not None:
        overrides["logging"]["level"] = args.log_level
    return overrides


def default_output_path(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}-patched.apk")


# ──────────────────────────────────────────────────────────────
# Console reporting
# ──────────────────────────────────────────────────────────────

_SYMBOLS = {
    "step_started": "…",
    "step_completed": "✔",
    "step_skipped": "↓",
    "step_failed": "✖",
}


def print_event(event) -> None:
    """Print one pipeline event as an indented step tree line."""
    indent = "  " * event.depth
    if event.kind == "progress":
        print(f"{indent}    → {event.payload}", flush=True)
    elif event.kind == "step_skipped" and event.payload:
        print(f"{indent}  ↓ {event.title} [skipped: {event.payload}]", flush=True)
    elif event.kind in _SYMBOLS:
        print(f"{indent}  {_SYMBOLS[event.kind]} {event.title}", flush=True)


_APP_BUNDLE_WARNING = """
  WARNING

  This app seems to be using Android App Bundle, which means that you
  will likely run into problems installing it. The app is made out of
  multiple APK files and you only patched one of them.

  To patch an app like this, export all of its APKs (for example as an
  .xapk or .apks file) and run apkpatch on each of them.
"""


def show_app_bundle_warning() -> None:
    print(_APP_BUNDLE_WARNING, file=sys.stderr)


def _raise_system_exit(signum: int, _frame: object) -> None:
    """Turn SIGTERM into SystemExit so ``finally`` blocks restore the terminal."""
    raise SystemExit(128 + signum)


# ──────────────────────────────────────────────────────────────
# Main
# ──────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point. Returns process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    from apkpatch.core.config import load_config
    from apkpatch.core.constants import C
    from apkpatch.core.logger import configure_journal
    from apkpatch.pipeline.patch_apk import RunLockedError, TaskOptions, patch_apk
    from apkpatch.tools.apktool import Apktool
    from apkpatch.tools.uber_apk_signer import UberApkSigner

    try:
        config = load_config(args.config, overrides=_config_overrides(args))
    except (FileNotFoundError, ValueError) as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 2

    level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO,
                 "WARN": logging.WARNING, "WARNING": logging.WARNING,
                 "ERROR": logging.ERROR}
    logging.basicConfig(level=level_map.get(config.logging.level.upper(), logging.INFO))

    journal = configure_journal(config.logging.journal_dir)
    journal.info("main", "args_parsed", {
        "input": args.input,
        "output": args.output,
        "wait": config.pipeline.wait,
        "config": args.config,
    })

    input_path = Path(args.input).expanduser().resolve()
    if not input_path.is_file():
        print(f"[ERROR] Input file not found: {input_path}", file=sys.stderr)
        return 2
    output_path = (
        Path(args.output).expanduser().resolve() if args.output
        else default_output_path(input_path)
    )

    C.validate(config.tools.java)

    tmp_dir = Path(tempfile.mkdtemp(prefix=config.pipeline.tmp_dir_prefix))
    tools = config.tools
    options = TaskOptions(
        input_path=input_path,
        output_path=output_path,
        tmp_dir=tmp_dir,
        apktool=Apktool(
            tools.apktool_jar,
            tmp_dir / C.FRAMEWORK_DIR_NAME,
            java=tools.java,
            version=tools.apktool_version,
        ),
        uber_apk_signer=UberApkSigner(tools.uber_apk_signer_jar, java=tools.java),
        wait=config.pipeline.wait,
        zipalign=config.pipeline.zipalign,
        tools=None if args.skip_download else tools,
    )

    signal.signal(signal.SIGTERM, _raise_system_exit)
    print(f"apkpatch {__version__}: patching {input_path.name}\n")

    try:
        result = patch_apk(options, on_event=print_event, journal=journal)
    except RunLockedError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print(f"\n[INFO] Interrupted, temporary files kept in {tmp_dir}", file=sys.stderr)
        journal.warn("main", "interrupted", {"tmp_dir": str(tmp_dir)})
        return 130
    finally:
        journal.flush()

    if not result.success:
        print(
            f"\n[ERROR] {result.failed_step} failed:\n{result.error}\n\n"
            f"Temporary files kept for inspection in {tmp_dir}",
            file=sys.stderr,
        )
        return 1

    print(f"\nDone! Patched APK: {output_path}")
    if result.context.uses_app_bundle:
        show_app_bundle_warning()

    if config.pipeline.keep_tmp_dir:
        print(f"Temporary files kept in {tmp_dir}")
    else:
        shutil.rmtree(tmp_dir, ignore_errors=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
