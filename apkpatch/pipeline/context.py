"""Mutable state shared by every step of one patch run."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from apkpatch.core.constants import C


@dataclass
class PatchContext:
    tmp_dir: Path
    decode_dir: Path
    tmp_apk_path: Path

    # Set by the manifest step, read by the network security config step
    # and by the CLI's app bundle warning.
    nsc_name: Optional[str] = None
    uses_app_bundle: bool = False

    # Set by the AAPT2 encode candidate when it fails; gates the AAPT fallback.
    fall_back_to_aapt: bool = False

    @classmethod
    def for_tmp_dir(cls, tmp_dir: Path | str) -> "PatchContext":
        tmp = Path(tmp_dir)
        return cls(
            tmp_dir=tmp,
            decode_dir=tmp / C.DECODE_DIR_NAME,
            tmp_apk_path=tmp / C.TMP_APK_NAME,
        )

    @property
    def manifest_path(self) -> Path:
        return self.decode_dir / C.MANIFEST_NAME

    @property
    def nsc_path(self) -> Path:
        if not self.nsc_name:
            raise RuntimeError("Network security config name is not known yet")
        return self.decode_dir / "res" / "xml" / f"{self.nsc_name}.xml"


__all__ = ["PatchContext"]
