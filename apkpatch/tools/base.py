"""
apkpatch/tools/base.py — Shared process plumbing for the Java tool adapters.

Two call shapes:

- :meth:`JavaTool._run` blocks until the process exits and returns its
  combined output (single result).
- :meth:`JavaTool._stream` yields the process output line by line as it is
  produced (progress stream). The generator starts one fresh process per
  call and raises :class:`ToolError` after the last line when the exit code
  is non-zero.
"""

from __future__ import annotations

import logging
import subprocess
from collections import deque
from pathlib import Path
from typing import Iterator, Sequence

logger = logging.getLogger(__name__)

# Output lines kept for the error message of a failed tool run
_ERROR_TAIL_LINES = 20


class ToolError(RuntimeError):
    """
    Raised when an external tool cannot be started, exits non-zero, or does
    not produce the artifact it was asked for.

    Args:
        tool: Tool name (e.g. ``'apktool'``).
        message: What went wrong.
        output: Last lines of the tool's output, if any.
        returncode: Process exit code, if the process ran.
    """

    def __init__(
        self,
        tool: str,
        message: str,
        output: Sequence[str] = (),
        returncode: int | None = None,
    ) -> None:
        self.tool = tool
        self.output = list(output)
        self.returncode = returncode
        text = f"{tool}: {message}"
        if self.output:
            text += "\n" + "\n".join(self.output)
        super().__init__(text)


class JavaTool:
    """
    Base adapter for a tool shipped as an executable jar.

    Args:
        jar_path: Path to the tool's jar.
        java: Java executable name or path.
    """

    name = "java-tool"

    def __init__(self, jar_path: Path | str, java: str = "java") -> None:
        self.jar_path = Path(jar_path)
        self.java = java

    def command(self, args: Sequence[str]) -> list[str]:
        return [self.java, "-jar", str(self.jar_path), *args]

    def _run(self, args: Sequence[str]) -> str:
        cmd = self.command(args)
        logger.debug("Running %s", cmd)
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                stdin=subprocess.DEVNULL,
            )
        except FileNotFoundError as exc:
            raise ToolError(self.name, f"cannot start {self.java!r}: {exc}") from exc

        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            tail = output.strip().splitlines()[-_ERROR_TAIL_LINES:]
            raise ToolError(
                self.name,
                f"exited with code {result.returncode}",
                output=tail,
                returncode=result.returncode,
            )
        return output

    def _stream(self, args: Sequence[str]) -> Iterator[str]:
        cmd = self.command(args)
        logger.debug("Streaming %s", cmd)
        tail: deque[str] = deque(maxlen=_ERROR_TAIL_LINES)
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
            )
        except FileNotFoundError as exc:
            raise ToolError(self.name, f"cannot start {self.java!r}: {exc}") from exc

        with proc:
            assert proc.stdout is not None
            for raw in proc.stdout:
                line = raw.rstrip()
                if line:
                    tail.append(line)
                    yield line
            returncode = proc.wait()

        if returncode != 0:
            raise ToolError(
                self.name,
                f"exited with code {returncode}",
                output=tail,
                returncode=returncode,
            )
