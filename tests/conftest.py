"""
tests/conftest.py — Shared fixtures for the apkpatch test suite.

Every test gets its own run journal inside ``tmp_path`` so no test writes
to ``./logs``, plus fake tool adapters that never start Java.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Sequence

import pytest

from apkpatch.core.logger import RunJournal, configure_journal
from apkpatch.tools.base import ToolError

MANIFEST_XML = """<?xml version="1.0" encoding="utf-8" standalone="no"?>
<manifest xmlns:android="http://schemas.android.com/apk/res/android" package="com.example.app">
    <application android:label="@string/app_name">
        <activity android:name=".MainActivity"/>
    </application>
</manifest>
"""


@pytest.fixture(autouse=True)
def journal(tmp_path: Path) -> Iterator[RunJournal]:
    """Journal writing to ``tmp_path/logs`` for the duration of one test."""
    j = configure_journal(tmp_path / "logs")
    yield j
    j.close()


class FakeApktool:
    """
    In-process stand-in for :class:`~apkpatch.tools.apktool.Apktool`.

    ``decode`` writes a minimal decoded tree; ``encode`` streams two lines
    and writes the rebuilt APK unless told to fail for that mode.
    """

    def __init__(
        self,
        fail_decode: bool = False,
        fail_aapt2: bool = False,
        fail_aapt: bool = False,
        manifest: str = MANIFEST_XML,
    ) -> None:
        self.fail_decode = fail_decode
        self.fail_aapt2 = fail_aapt2
        self.fail_aapt = fail_aapt
        self.manifest = manifest
        self.calls: list[tuple] = []

    def decode(self, input_path: Path, output_dir: Path) -> None:
        self.calls.append(("decode", Path(input_path)))
        if self.fail_decode:
            raise ToolError("apktool", "exited with code 1", ["brut.directory.PathNotExist"], 1)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        (output_dir / "AndroidManifest.xml").write_text(self.manifest, encoding="utf-8")
        (output_dir / "smali").mkdir(exist_ok=True)

    def encode(self, input_dir: Path, output_path: Path, use_aapt2: bool) -> Iterator[str]:
        self.calls.append(("encode", use_aapt2))
        yield f"I: Using Apktool (aapt2={use_aapt2})"
        if (use_aapt2 and self.fail_aapt2) or (not use_aapt2 and self.fail_aapt):
            raise ToolError("apktool", "exited with code 1", ["W: aapt2 error"], 1)
        Path(output_path).write_bytes(b"aapt2" if use_aapt2 else b"aapt")
        yield "I: Built apk..."

    @property
    def encode_modes(self) -> list[bool]:
        return [c[1] for c in self.calls if c[0] == "encode"]


class FakeSigner:
    """Stand-in for :class:`~apkpatch.tools.uber_apk_signer.UberApkSigner`."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.signed: list[Path] = []

    def sign(self, apk_paths: Sequence[Path], zipalign: bool = True) -> Iterator[str]:
        yield "source:"
        if self.fail:
            raise ToolError("uber-apk-signer", "exited with code 1", ["[ERROR] signing failed"], 1)
        for p in apk_paths:
            self.signed.append(Path(p))
            Path(p).write_bytes(Path(p).read_bytes() + b"+signed")
        yield "VERIFY: OK"


@pytest.fixture()
def fake_apktool() -> FakeApktool:
    return FakeApktool()


@pytest.fixture()
def fake_signer() -> FakeSigner:
    return FakeSigner()
