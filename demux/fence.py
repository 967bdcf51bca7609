"""Fence tracking for streamed Markdown.

Only fences opened with a requested language tag are tracked. A fence is
opened by a line starting with three backticks immediately followed by a tag
and closed by a line that is exactly three backticks (surrounding whitespace
ignored). Nested fences are not supported.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

FENCE = "```"
OPEN_FENCE_RE = re.compile(r"^```(?P<tag>[A-Za-z0-9]+)")


@dataclass(frozen=True)
class FenceState:
    inside_fence: bool = False
    active_language: Optional[str] = None


def normalize_languages(languages: Iterable[str]) -> List[str]:
    """Lower-case and de-duplicate tags, keeping first-seen order."""
    seen: List[str] = []
    for lang in languages:
        tag = lang.strip().lower()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def parse_open_tag(line: str) -> Optional[str]:
    """Return the lower-cased tag of an opening fence line, or None."""
    m = OPEN_FENCE_RE.match(line.strip())
    if not m:
        return None
    # "```js title=x" and "```js{1,3}" -> "js"
    return m.group("tag").lower()


def is_close_marker(line: str) -> bool:
    return line.strip() == FENCE


class FenceStateMachine:
    """Routes logical lines to the language whose fence is currently open."""

    def __init__(self, languages: Iterable[str]) -> None:
        self.languages = normalize_languages(languages)
        self._active: Optional[str] = None

    @property
    def state(self) -> FenceState:
        return FenceState(self._active is not None, self._active)

    def reset(self) -> None:
        self._active = None

    def process(self, line: str) -> Optional[str]:
        """Consume one line; return the language it belongs to, if any.

        Marker lines are consumed and never routed.
        """
        if self._active is None:
            tag = parse_open_tag(line)
            if tag is not None and tag in self.languages:
                self._active = tag
                logger.debug("Fence opened: %s", tag)
            return None

        if is_close_marker(line):
            logger.debug("Fence closed: %s", self._active)
            self._active = None
            return None
        return self._active
