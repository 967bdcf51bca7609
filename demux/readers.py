"""Pull-based source readers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator, Optional, Protocol, Union

from demux.channel import Fragment, ReadResult

logger = logging.getLogger(__name__)


class PullableReader(Protocol):
    """What the demultiplexer needs from its source.

    read() resolves to ReadResult(done=False, value=fragment) or
    ReadResult(done=True); cancel() may return an awaitable.
    """

    async def read(self) -> ReadResult:
        ...

    def cancel(self) -> Any:
        ...


class IterableReader:
    """Adapts a sync or async iterable of str/bytes fragments to a reader.

    Sync iterables are advanced on the event loop thread; wrap blocking
    iterators (like a requests response) in util.sse_client.ResponseReader
    instead.
    """

    def __init__(self, fragments: Union[Iterable[Fragment], AsyncIterable[Fragment]]) -> None:
        self._async: Optional[AsyncIterator[Fragment]] = None
        self._sync: Optional[Iterator[Fragment]] = None
        if hasattr(fragments, "__aiter__"):
            self._async = fragments.__aiter__()  # type: ignore[union-attr]
        else:
            self._sync = iter(fragments)  # type: ignore[arg-type]
        self.cancelled = False

    async def read(self) -> ReadResult:
        if self.cancelled:
            return ReadResult.end()
        if self._async is not None:
            try:
                value = await self._async.__anext__()
            except StopAsyncIteration:
                return ReadResult.end()
            return ReadResult.of(value)
        try:
            value = next(self._sync)  # type: ignore[arg-type]
        except StopIteration:
            return ReadResult.end()
        # let consumers run between fragments
        await asyncio.sleep(0)
        return ReadResult.of(value)

    async def cancel(self) -> None:
        if self.cancelled:
            return
        self.cancelled = True
        if self._async is not None and hasattr(self._async, "aclose"):
            await self._async.aclose()  # type: ignore[union-attr]
        elif self._sync is not None and hasattr(self._sync, "close"):
            self._sync.close()  # type: ignore[union-attr]
        logger.debug("Source reader cancelled")
