"""Pump loop that drives one demux invocation from start to teardown."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Set

from demux.channel import Fragment, PullableStream, maybe_await
from demux.config import DemuxConfig
from demux.fence import FenceStateMachine
from demux.frames import FrameExtractor
from demux.lines import LineReassembler
from demux.multiplexer import OutputMultiplexer
from demux.readers import PullableReader

logger = logging.getLogger(__name__)

RUNNING = "running"
DRAINING = "draining"
CLOSED = "closed"
ERRORED = "errored"
CANCELLED = "cancelled"


@dataclass
class DemuxResult:
    """The streams produced by demux()."""

    main: PullableStream
    named: Dict[str, PullableStream] = field(default_factory=dict)
    controller: Optional["LifecycleController"] = None

    def get(self, language: str) -> Optional[PullableStream]:
        return self.named.get(language.strip().lower())

    async def wait(self) -> str:
        """Wait for the producer to finish; return its terminal state."""
        if self.controller is None:
            return CLOSED
        return await self.controller.wait()


class LifecycleController:
    """Single producer task for one invocation.

    Reads the source until it ends, errors or is cancelled, and guarantees
    every output stream reaches exactly one terminal state.
    """

    def __init__(
        self,
        source: PullableReader,
        languages: Iterable[str],
        config: Optional[DemuxConfig] = None,
    ) -> None:
        self.source = source
        self.config = config or DemuxConfig()
        self.frames = FrameExtractor(
            payload_field=self.config.payload_field,
            framing=self.config.framing,
            encoding=self.config.encoding,
            strict=self.config.strict,
        )
        self.lines = LineReassembler()
        self.fences = FenceStateMachine(languages)
        self.output = OutputMultiplexer(self.fences.languages, on_cancel=self._on_stream_cancel)
        self.state = RUNNING
        self._task: Optional["asyncio.Future[None]"] = None
        self._cancel_requested = False
        self._ended_fences: Set[str] = set()

    @property
    def terminated(self) -> bool:
        return self.state in (CLOSED, ERRORED, CANCELLED)

    def start(self) -> "asyncio.Future[None]":
        if self._task is None:
            self._task = asyncio.ensure_future(self.run())
        return self._task

    async def wait(self) -> str:
        if self._task is not None:
            await asyncio.wait([self._task])
        return self.state

    async def run(self) -> None:
        try:
            while not self._cancel_requested:
                result = await self.source.read()
                if result.done:
                    break
                self._route_fragment(result.value)
            if not self._cancel_requested:
                self.state = DRAINING
                for text in self.frames.flush():
                    self._route_text(text)
                rest = self.lines.flush()
                if rest is not None:
                    self._route_line(rest)
        except asyncio.CancelledError:
            self._finish_cancelled()
            if not self._cancel_requested:
                raise
            return
        except Exception as exc:
            if self._cancel_requested:
                # the read failed because the source was cancelled under it
                logger.debug("Source raised after cancellation: %r", exc)
                self._finish_cancelled()
                return
            logger.warning("Stream source failed: %r", exc)
            self.output.error_all(exc)
            self.state = ERRORED
            return

        if self._cancel_requested:
            self._finish_cancelled()
            return
        self.output.close_all()
        self.state = CLOSED

    # ---- routing ----
    def _route_fragment(self, fragment: Fragment) -> None:
        for text in self.frames.feed(fragment):
            self._route_text(text)

    def _route_text(self, text: str) -> None:
        self.output.write_main(text)
        for line in self.lines.feed(text):
            self._route_line(line)

    def _route_line(self, line: str) -> None:
        before = self.fences.state.active_language
        lang = self.fences.process(line)
        if lang is not None:
            if lang in self._ended_fences:
                logger.debug("Dropping line for already closed %s block", lang)
                return
            self.output.write_named(lang, line)
            return

        after = self.fences.state.active_language
        if before is None and after in self._ended_fences:
            logger.debug("%s block reopened after its stream was closed", after)
        elif before is not None and after is None and self.config.close_on_fence_end:
            self._ended_fences.add(before)
            self.output.close_named(before)

    # ---- cancellation ----
    async def _on_stream_cancel(self, stream: PullableStream, reason: Any) -> None:
        if self.terminated or self._cancel_requested:
            return
        if self.config.cancel_policy == "refcount":
            # a cancelled stream is already closed; streams closed at their fence end count as gone too
            remaining = [s for s in self.output.streams() if s.is_open]
            if remaining:
                logger.debug("Stream %r cancelled; %d consumer(s) still reading", stream.name, len(remaining))
                return
        logger.debug("Cancelling source (requested by %r stream: %r)", stream.name, reason)
        await self._cancel_source()

    async def _cancel_source(self) -> None:
        self._cancel_requested = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        self._finish_cancelled()
        try:
            await maybe_await(self.source.cancel())
        except Exception:
            logger.warning("Source cancel() failed", exc_info=True)

    def _finish_cancelled(self) -> None:
        if self.terminated:
            return
        self.output.close_all()
        self.state = CANCELLED


def demux(
    source: PullableReader,
    languages: Iterable[str] = (),
    config: Optional[DemuxConfig] = None,
) -> DemuxResult:
    """Split a streamed response into its full text and per-language blocks.

    Must be called with a running event loop. The returned streams are
    filled by a background task; each one can be read independently.
    """
    controller = LifecycleController(source, languages, config)
    controller.start()
    return DemuxResult(main=controller.output.main, named=dict(controller.output.named), controller=controller)


def text_stream(source: PullableReader, config: Optional[DemuxConfig] = None) -> PullableStream:
    """Reconstructed text of a streamed response, without block extraction."""
    return demux(source, (), config).main
