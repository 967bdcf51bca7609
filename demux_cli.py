#!/usr/bin/env python3
"""
demux-cli: stream an SSE endpoint (or replay a captured transcript) and split
out fenced blocks.

- Renders the full response live as Markdown (Rich)
- Prints every requested fenced block in its own panel once the stream ends
- Ctrl+C cancels the stream; all output streams are closed cleanly

Requirements:
    pip install rich requests

Usage:
    python demux_cli.py --url http://127.0.0.1:3000/api/chat --prompt "plan my move" --lang projectplan
    python demux_cli.py --replay captured.sse --lang mermaid --lang projectplan
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Iterator, List, Optional

from requests.exceptions import RequestException
from rich.console import Console
from rich.live import Live
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from demux import DemuxConfig, DemuxError, IterableReader, PullableStream, collect, demux
from util.sse_client import open_sse_reader

DEFAULT_URL = "http://127.0.0.1:3000/api/chat"
REPLAY_CHUNK_SIZE = 64

COLOR_TITLE = "cyan"
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def iter_replay_chunks(data: bytes, chunk_size: int = REPLAY_CHUNK_SIZE) -> Iterator[bytes]:
    """Cut a captured transcript into fixed-size chunks, ignoring frame boundaries."""
    for i in range(0, len(data), chunk_size):
        yield data[i:i + chunk_size]


def _read_replay(path: str) -> bytes:
    if path == "-":
        return sys.stdin.buffer.read()
    with open(path, "rb") as fh:
        return fh.read()


async def render_main(stream: PullableStream, *, live_console: Console = console) -> str:
    """Render the main stream live and return the full text."""
    md_text = ""
    renderable = Panel(Markdown(""), title="[dim]Awaiting tokens…[/dim]", border_style="blue")
    with Live(renderable, console=live_console, refresh_per_second=24, transient=True) as live:
        async for piece in stream:
            md_text += piece
            live.update(
                Panel(Markdown(md_text), title="[dim]Streaming…[/dim]", border_style=COLOR_TITLE),
                refresh=True,
            )
    if md_text:
        live_console.print(Markdown(md_text))
    return md_text


def print_blocks(blocks: Dict[str, str], *, out: Console = console) -> None:
    for lang, body in blocks.items():
        if not body:
            out.print(Text(f"no {lang} block in response", style="dim"))
            continue
        out.print(Panel(
            Syntax(body.rstrip("\n"), lang, word_wrap=True),
            title=f"[bold {COLOR_TITLE}]{lang}[/bold {COLOR_TITLE}]",
            border_style=COLOR_TITLE,
        ))


async def run(args: argparse.Namespace, config: DemuxConfig) -> int:
    if args.replay:
        source = IterableReader(iter_replay_chunks(_read_replay(args.replay), args.chunk_size))
    else:
        source = await open_sse_reader(args.url, json={"prompt": args.prompt}, timeout=args.timeout)

    result = demux(source, args.lang or [], config)
    block_tasks = {lang: asyncio.ensure_future(collect(stream)) for lang, stream in result.named.items()}
    try:
        await render_main(result.main)
    except asyncio.CancelledError:
        await result.main.cancel("interrupted")
        console.print("\n[bold red]⏹ Aborted[/bold red]")
        return 1
    finally:
        # collect every block so no stream error goes unretrieved
        outcomes = await asyncio.gather(*block_tasks.values(), return_exceptions=True)

    blocks = {lang: body for lang, body in zip(block_tasks, outcomes) if isinstance(body, str)}
    print_blocks(blocks)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Stream an SSE response and extract fenced code blocks.")
    parser.add_argument("--url", default=os.getenv("DEMUX_URL", DEFAULT_URL), help=f"Streaming endpoint (default: {DEFAULT_URL})")
    parser.add_argument("--prompt", default="", help="Prompt sent as {\"prompt\": ...} to --url")
    parser.add_argument("--replay", metavar="FILE", help="Replay a captured SSE transcript instead of calling --url ('-' for stdin)")
    parser.add_argument("--chunk-size", type=int, default=REPLAY_CHUNK_SIZE, help="Replay chunk size in bytes")
    parser.add_argument("--lang", action="append", help="Fence language to extract (repeatable)")
    parser.add_argument("--raw", action="store_true", default=None, help="Input is plain text, not SSE frames")
    parser.add_argument("--strict", action="store_true", default=None, help="Fail on malformed SSE frames")
    parser.add_argument("--field", default=None, help="JSON field carrying the text (default: chunk)")
    parser.add_argument("--timeout", type=float, default=60.0, help="HTTP timeout in seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    if not args.replay and not args.prompt:
        parser.error("one of --prompt or --replay is required")

    try:
        config = DemuxConfig.from_env(
            framing="raw" if args.raw else None,
            strict=args.strict,
            payload_field=args.field,
        )
    except ValueError as e:
        parser.error(str(e))

    try:
        return asyncio.run(run(args, config))
    except RequestException as e:
        console.print(Panel.fit(str(e), title="[red]Network error[/red]", border_style="red"))
        return 1
    except DemuxError as e:
        console.print(Panel.fit(str(e), title="[red]Stream error[/red]", border_style="red"))
        return 1
    except KeyboardInterrupt:
        console.print("\n[dim]Bye![/dim]")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
