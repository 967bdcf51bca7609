"""Demultiplexer configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

FRAMINGS = ("sse", "raw")
CANCEL_POLICIES = ("shared", "refcount")

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}

# field name -> environment variable
ENV_VARS = {
    "framing": "DEMUX_FRAMING",
    "payload_field": "DEMUX_PAYLOAD_FIELD",
    "encoding": "DEMUX_ENCODING",
    "strict": "DEMUX_STRICT",
    "cancel_policy": "DEMUX_CANCEL_POLICY",
    "close_on_fence_end": "DEMUX_CLOSE_ON_FENCE_END",
}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUTHY:
        return True
    if value in _FALSY:
        return False
    raise ValueError(f"{name}: expected a boolean, got {raw!r}")


@dataclass
class DemuxConfig:
    """Options for one demux invocation.

    framing: "sse" parses `data:` frames carrying JSON; "raw" treats every
        fragment as plain text.
    payload_field: JSON field holding the text fragment.
    encoding: codec used for bytes fragments.
    strict: raise FrameDecodeError on malformed frames instead of dropping them.
    cancel_policy: "shared" cancels the source as soon as any output stream is
        cancelled; "refcount" waits until every output stream is cancelled.
    close_on_fence_end: close a named stream when its fence closes instead of
        keeping it open for a later fence with the same tag.
    """

    framing: str = "sse"
    payload_field: str = "chunk"
    encoding: str = "utf-8"
    strict: bool = False
    cancel_policy: str = "shared"
    close_on_fence_end: bool = False

    def __post_init__(self) -> None:
        if self.framing not in FRAMINGS:
            raise ValueError(f"framing must be one of {FRAMINGS}, got {self.framing!r}")
        if self.cancel_policy not in CANCEL_POLICIES:
            raise ValueError(
                f"cancel_policy must be one of {CANCEL_POLICIES}, got {self.cancel_policy!r}"
            )
        if not self.payload_field:
            raise ValueError("payload_field must not be empty")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "DemuxConfig":
        """Build a config from DEMUX_* environment variables.

        Keyword overrides win over the environment; None overrides are ignored.
        """
        env = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            raw = env.get(ENV_VARS[f.name])
            if raw is None:
                continue
            if f.type in ("bool", bool):
                values[f.name] = _parse_bool(ENV_VARS[f.name], raw)
            else:
                values[f.name] = raw.strip()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
