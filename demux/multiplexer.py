from __future__ import annotations

from typing import Dict, Iterable, Optional

from demux.channel import CancelHook, PullableStream
from demux.fence import normalize_languages

MAIN = "main"


class OutputMultiplexer:
    """Owns the main stream and one named stream per requested language."""

    def __init__(self, languages: Iterable[str], on_cancel: Optional[CancelHook] = None) -> None:
        self.main = PullableStream(MAIN, on_cancel=on_cancel)
        self.named: Dict[str, PullableStream] = {
            lang: PullableStream(lang, on_cancel=on_cancel)
            for lang in normalize_languages(languages)
        }

    def streams(self):
        yield self.main
        yield from self.named.values()

    def write_main(self, text: str) -> None:
        self.main.enqueue(text)

    def write_named(self, lang: str, line: str) -> None:
        stream = self.named.get(lang)
        if stream is None:
            return
        stream.enqueue(line + "\n")

    def close_named(self, lang: str) -> None:
        stream = self.named.get(lang)
        if stream is not None:
            stream.close()

    def close_all(self) -> None:
        for stream in self.streams():
            stream.close()

    def error_all(self, exc: BaseException) -> None:
        for stream in self.streams():
            stream.error(exc)
