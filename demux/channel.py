"""Queue-backed pull streams handed to consumers."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Fragment = Union[str, bytes]


@dataclass(frozen=True)
class ReadResult:
    """Outcome of one read(): a value, or the end of the stream."""

    done: bool
    value: Optional[Any] = None

    @classmethod
    def of(cls, value: Any) -> "ReadResult":
        return cls(done=False, value=value)

    @classmethod
    def end(cls) -> "ReadResult":
        return cls(done=True)


_END = object()

CancelHook = Callable[["PullableStream", Any], Optional[Awaitable[None]]]


class PullableStream:
    """An output stream one consumer pulls from at its own pace.

    The producer side (enqueue/close/error) never blocks. The queue is
    unbounded.
    """

    def __init__(self, name: str, on_cancel: Optional[CancelHook] = None) -> None:
        self.name = name
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._on_cancel = on_cancel
        self._state = "open"
        self._exception: Optional[BaseException] = None
        self._drained = False

    def __repr__(self) -> str:
        return f"PullableStream({self.name!r}, state={self._state!r})"

    # ---- state ----
    @property
    def state(self) -> str:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state == "closed"

    @property
    def errored(self) -> bool:
        return self._state == "errored"

    @property
    def is_open(self) -> bool:
        return self._state == "open"

    @property
    def exception(self) -> Optional[BaseException]:
        return self._exception

    # ---- producer side ----
    def enqueue(self, value: Any) -> None:
        if self._state != "open":
            logger.debug("Ignoring write to %s stream %r", self._state, self.name)
            return
        self._queue.put_nowait(value)

    def close(self) -> None:
        if self._state != "open":
            return
        self._state = "closed"
        self._queue.put_nowait(_END)

    def error(self, exc: BaseException) -> None:
        if self._state != "open":
            return
        self._state = "errored"
        self._exception = exc
        self._queue.put_nowait(_END)

    # ---- consumer side ----
    async def read(self) -> ReadResult:
        """Return the next value, or done once the stream has closed.

        After an error, values queued before it are still returned; then every
        read raises the stream's exception.
        """
        if self._drained:
            return self._terminal()
        item = await self._queue.get()
        if item is _END:
            self._drained = True
            return self._terminal()
        return ReadResult.of(item)

    def _terminal(self) -> ReadResult:
        if self._exception is not None:
            raise self._exception
        return ReadResult.end()

    async def cancel(self, reason: Any = None) -> None:
        """Stop consuming: drop queued values and notify the producer."""
        if self._state == "open":
            self._state = "closed"
            self._drained = True
            while not self._queue.empty():
                self._queue.get_nowait()
        hook, self._on_cancel = self._on_cancel, None
        if hook is not None:
            await maybe_await(hook(self, reason))

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        result = await self.read()
        if result.done:
            raise StopAsyncIteration
        return result.value


async def collect(stream: PullableStream) -> str:
    """Read a text stream to the end and return everything it delivered."""
    parts = []
    async for piece in stream:
        parts.append(piece)
    return "".join(parts)


async def maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value

