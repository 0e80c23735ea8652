"""uber-apk-signer adapter: zipalign and sign APKs with the debug keystore."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator, Sequence

from apkpatch.tools.base import JavaTool


class UberApkSigner(JavaTool):
    name = "uber-apk-signer"

    def sign(self, apk_paths: Sequence[Path | str], zipalign: bool = True) -> Iterator[str]:
        """Sign ``apk_paths`` in place, yielding the signer's output lines."""
        args = ["--apks", *(str(p) for p in apk_paths), "--allowResign", "--overwrite"]
        if not zipalign:
            args.append("--skipZipAlign")
        yield from self._stream(args)
