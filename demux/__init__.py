"""Demultiplex streamed LLM output into its full text and fenced blocks.

Typical use::

    result = demux(reader, ["mermaid", "projectplan"])
    async for piece in result.main:
        ...
    plan = await collect(result.get("projectplan"))
"""

from __future__ import annotations

from demux.channel import PullableStream, ReadResult, collect
from demux.config import DemuxConfig
from demux.controller import DemuxResult, LifecycleController, demux, text_stream
from demux.errors import DemuxError, FrameDecodeError
from demux.fence import FenceState, FenceStateMachine
from demux.frames import FrameExtractor, format_sse_frame
from demux.lines import LineReassembler
from demux.multiplexer import OutputMultiplexer
from demux.readers import IterableReader, PullableReader

__all__ = [
    "DemuxConfig",
    "DemuxError",
    "DemuxResult",
    "FenceState",
    "FenceStateMachine",
    "FrameDecodeError",
    "FrameExtractor",
    "IterableReader",
    "LifecycleController",
    "LineReassembler",
    "OutputMultiplexer",
    "PullableReader",
    "PullableStream",
    "ReadResult",
    "collect",
    "demux",
    "format_sse_frame",
    "text_stream",
]
