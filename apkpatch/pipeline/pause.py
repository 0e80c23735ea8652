"""
apkpatch/pipeline/pause.py — Interactive pause between decode and re-encode.

The pause step prints one prompt, switches the controlling terminal to raw
mode and blocks until a single key arrives, so the operator can edit the
decoded tree by hand. The terminal's previous mode is restored on every exit
path, including KeyboardInterrupt and SystemExit.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from typing import IO, Any, Iterator, Optional, Protocol

from apkpatch.core.constants import C
from apkpatch.pipeline.steps import StepHandle

logger = logging.getLogger(__name__)

# Upper bound on the bytes a terminal sends for one key press
_KEY_READ_SIZE = 32


class KeySource(Protocol):
    """Anything that blocks until one key press and returns it."""

    def read_key(self) -> str:
        ...


@contextmanager
def raw_mode(stream: IO[str]) -> Iterator[None]:
    """
    Put ``stream``'s terminal into raw, unbuffered input mode for the block.

    Streams that are not a terminal (pipes, files, test doubles) are left
    untouched.
    """
    if not stream.isatty():
        yield
        return

    import termios  # noqa: PLC0415
    import tty  # noqa: PLC0415

    fd = stream.fileno()
    previous = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, previous)
        logger.debug("Terminal mode restored on fd %d", fd)


class TerminalKeySource:
    """
    Reads exactly one key from the controlling terminal.

    Args:
        stream: Input stream; defaults to ``sys.stdin``.
    """

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self._stream = stream if stream is not None else sys.stdin

    def read_key(self) -> str:
        with raw_mode(self._stream):
            if self._stream.isatty():
                # One raw read returns every byte of a single key press.
                data = os.read(self._stream.fileno(), _KEY_READ_SIZE)
                return data.decode("utf-8", errors="replace")
            return self._stream.read(1)


def wait_for_keypress(key_source: KeySource):
    """
    Build the pause step's action.

    The action is a generator: the prompt is forwarded as a progress line
    before the blocking read starts.
    """

    def _action(_ctx: Any, task: StepHandle) -> Iterator[str]:
        yield C.PAUSE_PROMPT
        key = key_source.read_key()
        logger.info("Pause released by key %r", key)

    return _action
