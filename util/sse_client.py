from __future__ import annotations

import asyncio
import logging
from typing import Dict, Optional

import requests

from demux.channel import ReadResult

logger = logging.getLogger(__name__)


class ResponseReader:
    """Pull-based reader over a streaming requests.Response.

    Each read() pulls the next raw chunk off the event loop thread, so a slow
    network never blocks the consumers of the demultiplexed streams.
    """

    def __init__(self, response: requests.Response, chunk_size: Optional[int] = None) -> None:
        self.response = response
        # chunk_size=None yields data as it arrives on a stream=True response
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self.closed = False

    async def read(self) -> ReadResult:
        if self.closed:
            return ReadResult.end()
        chunk = await asyncio.to_thread(next, self._chunks, None)
        if chunk is None:
            return ReadResult.end()
        return ReadResult.of(chunk)

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.response.close()
        logger.debug("Closed SSE response from %s", getattr(self.response, "url", "?"))


async def open_sse_reader(
    url: str,
    *,
    method: str = "POST",
    json: Optional[dict] = None,
    params: Optional[Dict[str, str]] = None,
    timeout: float = 60.0,
    session: Optional[requests.Session] = None,
) -> ResponseReader:
    """Open a streaming HTTP request and return a reader over its body.

    Raises requests.HTTPError for non-2xx responses.
    """
    sse_session = session or requests.Session()
    req = sse_session.get if method.upper() == "GET" else sse_session.post
    r = await asyncio.to_thread(req, url, json=json, params=params, stream=True, timeout=timeout)
    try:
        r.raise_for_status()
    except requests.HTTPError:
        r.close()
        raise
    return ResponseReader(r)
