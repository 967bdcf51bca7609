from __future__ import annotations

from typing import List, Optional


class LineReassembler:
    """Accumulates text and yields only complete, newline-terminated lines.

    The trailing partial line stays buffered until more text arrives or the
    caller flushes it at end of input.
    """

    def __init__(self) -> None:
        self._buffer: str = ""

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, text: str) -> List[str]:
        """Feed text, returning completed lines without their newline."""
        if not text:
            return []
        pieces = (self._buffer + text).split("\n")
        self._buffer = pieces.pop()
        return pieces

    def flush(self) -> Optional[str]:
        if not self._buffer:
            return None
        rest = self._buffer
        self._buffer = ""
        return rest
