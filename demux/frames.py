"""Server-Sent-Events frame extraction.

Fragments from the transport arrive with no regard for record boundaries, so
the extractor carries the trailing incomplete record over to the next call
and only parses records once their blank-line delimiter has been seen.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import List, Optional, Union

from demux.errors import FrameDecodeError

logger = logging.getLogger(__name__)

DATA_MARKER = "data:"
DONE_SENTINEL = "[DONE]"
RECORD_DELIMITER = "\n\n"


def format_sse_frame(text: str, field: str = "chunk") -> str:
    """Encode one text fragment the way the streaming endpoint does."""
    return f"{DATA_MARKER} {json.dumps({field: text})}\n\n"


class FrameExtractor:
    """Turns raw transport fragments into payload text fragments."""

    def __init__(
        self,
        *,
        payload_field: str = "chunk",
        framing: str = "sse",
        encoding: str = "utf-8",
        strict: bool = False,
    ) -> None:
        self.payload_field = payload_field
        self.framing = framing
        self.strict = strict
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, fragment: Union[str, bytes, None]) -> List[str]:
        """Consume one raw fragment, returning payload texts in arrival order."""
        text = self._decode(fragment)
        if self.framing == "raw":
            return [text] if text else []
        if not text:
            return []

        self._pending = (self._pending + text).replace("\r\n", "\n")
        # a lone trailing \r may be the first half of \r\n
        hold_cr = self._pending.endswith("\r")
        if hold_cr:
            self._pending = self._pending[:-1]

        records = self._pending.split(RECORD_DELIMITER)
        self._pending = records.pop() + ("\r" if hold_cr else "")

        out: List[str] = []
        for record in records:
            payload = self._parse_record(record)
            if payload is not None:
                out.append(payload)
        return out

    def flush(self) -> List[str]:
        """Process whatever is left once the source has ended."""
        text = self._decoder.decode(b"", final=True)
        if self.framing == "raw":
            return [text] if text else []
        rest = (self._pending + text).replace("\r\n", "\n").rstrip("\r")
        self._pending = ""
        out: List[str] = []
        for record in rest.split(RECORD_DELIMITER):
            payload = self._parse_record(record)
            if payload is not None:
                out.append(payload)
        return out

    def _decode(self, fragment: Union[str, bytes, None]) -> str:
        if fragment is None:
            return ""
        if isinstance(fragment, (bytes, bytearray, memoryview)):
            return self._decoder.decode(bytes(fragment))
        return fragment

    def _parse_record(self, record: str) -> Optional[str]:
        data_lines = []
        for line in record.split("\n"):
            if not line.startswith(DATA_MARKER):
                # comments (":"), event:, id:, retry: and blank lines
                continue
            value = line[len(DATA_MARKER):]
            if value.startswith(" "):
                value = value[1:]
            data_lines.append(value)
        if not data_lines:
            return None

        payload = "\n".join(data_lines).strip()
        if payload == DONE_SENTINEL:
            return None
        try:
            evt = json.loads(payload)
        except json.JSONDecodeError as e:
            return self._reject(payload, f"malformed JSON payload: {e}")

        if not isinstance(evt, dict):
            return self._reject(payload, "payload is not a JSON object")
        chunk = evt.get(self.payload_field)
        if not isinstance(chunk, str):
            return self._reject(payload, f"payload has no string field {self.payload_field!r}")
        return chunk

    def _reject(self, payload: str, reason: str) -> None:
        if self.strict:
            raise FrameDecodeError(reason, payload)
        logger.debug("Dropping SSE frame (%s): %.80s", reason, payload)
        return None
