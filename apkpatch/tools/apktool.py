"""apktool adapter: decode an APK into a smali/resource tree and build it back."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator

from apkpatch.tools.base import JavaTool, ToolError

# First apktool release that builds with aapt2 unless told otherwise
_AAPT2_DEFAULT_SINCE = (2, 9)


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for piece in version.split("."):
        digits = "".join(ch for ch in piece if ch.isdigit())
        if not digits:
            break
        parts.append(int(digits))
    return tuple(parts)


class Apktool(JavaTool):
    """
    Args:
        jar_path: Path to ``apktool.jar``.
        framework_path: Framework cache directory; one per run so parallel
            runs in different tmp dirs never share installed frameworks.
        java: Java executable name or path.
        version: apktool release of ``jar_path``; decides which flag
            selects the resource encoder.
    """

    name = "apktool"

    def __init__(
        self,
        jar_path: Path | str,
        framework_path: Path | str,
        java: str = "java",
        version: str = "2.9.3",
    ) -> None:
        super().__init__(jar_path, java=java)
        self.framework_path = Path(framework_path)
        self.version = version

    @property
    def aapt2_is_default(self) -> bool:
        return _version_tuple(self.version) >= _AAPT2_DEFAULT_SINCE

    def encoder_flags(self, use_aapt2: bool) -> list[str]:
        """Flags that make ``build`` use AAPT2 or the legacy AAPT."""
        if self.aapt2_is_default:
            return [] if use_aapt2 else ["--use-aapt1"]
        return ["--use-aapt2"] if use_aapt2 else []

    def decode(self, input_path: Path | str, output_dir: Path | str) -> None:
        self._run([
            "decode", str(input_path),
            "--output", str(output_dir),
            "--frame-path", str(self.framework_path),
            "--force",
        ])

    def encode(
        self,
        input_dir: Path | str,
        output_path: Path | str,
        use_aapt2: bool,
    ) -> Iterator[str]:
        args = [
            "build", str(input_dir),
            "--output", str(output_path),
            "--frame-path", str(self.framework_path),
            *self.encoder_flags(use_aapt2),
        ]

        yield from self._stream(args)

        if not Path(output_path).exists():
            raise ToolError(self.name, f"build finished but {output_path} was not written")
