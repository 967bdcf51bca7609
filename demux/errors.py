"""Exceptions raised by the demultiplexer."""

from __future__ import annotations


class DemuxError(Exception):
    """Base class for demultiplexer failures."""


class FrameDecodeError(DemuxError):
    """A transport frame carried a payload that could not be decoded.

    Only raised when the demultiplexer runs in strict mode; otherwise such
    frames are dropped.
    """

    def __init__(self, message: str, payload: str) -> None:
        super().__init__(message)
        self.payload = payload
