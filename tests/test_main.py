"""
tests/test_main.py — Tests for the apkpatch command-line entry point.

patch_apk is patched out so no tools run; the tests check argument
handling, console output and exit codes.
"""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from apkpatch.main import default_output_path, main, print_event
from apkpatch.pipeline.patch_apk import RunLockedError
from apkpatch.pipeline.steps import PipelineEvent


@pytest.fixture()
def apk(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("APKPATCH_CONFIG", raising=False)
    path = tmp_path / "app.apk"
    path.write_bytes(b"apk")
    return path


def _result(success: bool, uses_app_bundle: bool = False):
    return SimpleNamespace(
        success=success,
        context=SimpleNamespace(uses_app_bundle=uses_app_bundle),
        failed_step=None if success else "Signing patched APK file",
        error=None if success else RuntimeError("uber-apk-signer: exited with code 1"),
    )


def test_default_output_path() -> None:
    assert default_output_path(Path("/data/app.apk")) == Path("/data/app-patched.apk")


def test_print_event_tree(capsys: pytest.CaptureFixture) -> None:
    print_event(PipelineEvent("step_started", "Encoding patched APK file"))
    print_event(PipelineEvent("step_skipped", "Encoding using AAPT2", "Failed, falling back to AAPT...", depth=1))
    print_event(PipelineEvent("progress", "Encoding using AAPT [fallback]", "I: Built apk...", depth=1))
    print_event(PipelineEvent("run_completed"))

    out = capsys.readouterr().out.splitlines()
    assert out == [
        "  … Encoding patched APK file",
        "    ↓ Encoding using AAPT2 [skipped: Failed, falling back to AAPT...]",
        "      → I: Built apk...",
    ]


def test_missing_input_exits_2(apk: Path, capsys: pytest.CaptureFixture) -> None:
    assert main([str(apk.with_name("missing.apk")), "--skip-download"]) == 2
    assert "Input file not found" in capsys.readouterr().err


def test_bad_config_exits_2(apk: Path, tmp_path: Path) -> None:
    assert main([str(apk), "--config", str(tmp_path / "nope.yaml")]) == 2


def test_success_removes_tmp_dir_and_passes_options(apk: Path, capsys: pytest.CaptureFixture) -> None:
    with patch("apkpatch.pipeline.patch_apk.patch_apk", return_value=_result(True)) as run:
        code = main([str(apk), "--skip-download", "--wait"])

    assert code == 0
    options = run.call_args.args[0]
    assert options.wait is True
    assert options.tools is None
    assert options.output_path == apk.with_name("app-patched.apk")
    assert not options.tmp_dir.exists()
    assert "Done!" in capsys.readouterr().out


def test_app_bundle_warning_shown(apk: Path, capsys: pytest.CaptureFixture) -> None:
    with patch("apkpatch.pipeline.patch_apk.patch_apk", return_value=_result(True, True)):
        assert main([str(apk), "--skip-download"]) == 0
    assert "App Bundle" in capsys.readouterr().err


def test_failure_keeps_tmp_dir(apk: Path, capsys: pytest.CaptureFixture) -> None:
    with patch("apkpatch.pipeline.patch_apk.patch_apk", return_value=_result(False)) as run:
        code = main([str(apk), "--skip-download", "-o", str(apk.with_name("out.apk"))])

    assert code == 1
    options = run.call_args.args[0]
    assert options.output_path == apk.with_name("out.apk")
    assert options.tmp_dir.exists()
    err = capsys.readouterr().err
    assert "Signing patched APK file failed" in err
    assert str(options.tmp_dir) in err


def test_lock_conflict_exits_1(apk: Path) -> None:
    with patch("apkpatch.pipeline.patch_apk.patch_apk", side_effect=RunLockedError("busy")):
        assert main([str(apk), "--skip-download"]) == 1


def test_keyboard_interrupt_exits_130(apk: Path) -> None:
    with patch("apkpatch.pipeline.patch_apk.patch_apk", side_effect=KeyboardInterrupt):
        assert main([str(apk), "--skip-download"]) == 130
