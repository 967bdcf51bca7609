"""End-to-end behaviour of demux() over scripted sources."""

import asyncio
import json
import random

import pytest

from demux import DemuxConfig, FrameDecodeError, IterableReader, ReadResult, collect, demux, format_sse_frame, text_stream


PLAN_RESPONSE = (
    "Thank you for providing all the necessary information. Here is your plan:\n"
    "\n"
    "```ProjectPlan\n"
    "# Timescales\n"
    "- Project duration: 6 months\n"
    "\n"
    "# Scope\n"
    "- Includes:\n"
    "  - Modular DIY furniture kits\n"
    "```\n"
    "And a diagram:\n"
    "```mermaid\n"
    "gantt\n"
    "  title Plan\n"
    "```\n"
    "```python\n"
    "print('not requested')\n"
    "```\n"
    "Done."
)


def sse_fragments(text, text_chunk=20):
    """Frame `text` the way the server does: one SSE record per text chunk."""
    return "".join(format_sse_frame(text[i:i + text_chunk]) for i in range(0, len(text), text_chunk))


def split_at(raw, cuts):
    cuts = sorted(set(c for c in cuts if 0 < c < len(raw)))
    bounds = [0] + cuts + [len(raw)]
    return [raw[a:b] for a, b in zip(bounds, bounds[1:])]


async def run_demux(fragments, languages, config=None):
    result = demux(IterableReader(fragments), languages, config)
    names = list(result.named)
    outputs = await asyncio.gather(collect(result.main), *(collect(result.named[n]) for n in names))
    return outputs[0], dict(zip(names, outputs[1:]))


class FailingReader:
    """Delivers the given fragments, then raises."""

    def __init__(self, fragments, exc):
        self.fragments = list(fragments)
        self.exc = exc
        self.cancelled = False

    async def read(self):
        await asyncio.sleep(0)
        if self.fragments:
            return ReadResult.of(self.fragments.pop(0))
        raise self.exc

    def cancel(self):
        self.cancelled = True


def test_scenario_three_fragments():
    fragments = [
        'data: {"chunk": "he',
        'llo\\n```js\\nconsol',
        'e.log(1)\\n```\\n"}\n\n',
    ]
    main, named = asyncio.run(run_demux(fragments, ["js"]))
    assert main == "hello\n```js\nconsole.log(1)\n```\n"
    assert named == {"js": "console.log(1)\n"}


def test_exact_extraction_line_by_line():
    async def scenario():
        raw = format_sse_frame("```lang\nfoo\nbar\n```\n")
        result = demux(IterableReader([raw]), ["lang"])
        stream = result.named["lang"]
        pieces = []
        while True:
            r = await stream.read()
            if r.done:
                break
            pieces.append(r.value)
        return await collect(result.main), pieces

    main, pieces = asyncio.run(scenario())
    assert pieces == ["foo\n", "bar\n"]
    assert main == "```lang\nfoo\nbar\n```\n"


def test_no_fence_closes_named_streams_empty():
    text = "plain text\nwith lines\nand no markers\n"
    main, named = asyncio.run(run_demux([sse_fragments(text)], ["js", "mermaid"]))
    assert main == text
    assert named == {"js": "", "mermaid": ""}


def test_unrequested_language_only_in_main():
    text = "```python\nprint(1)\n```\n"
    main, named = asyncio.run(run_demux([sse_fragments(text, 4)], ["js"]))
    assert main == text
    assert named == {"js": ""}


def test_eof_inside_fence_closes_cleanly():
    text = "```mermaid\ngraph TD\nA-->B"
    main, named = asyncio.run(run_demux([sse_fragments(text, 3)], ["mermaid"]))
    assert main == text
    # the unterminated last line is flushed at end of input
    assert named == {"mermaid": "graph TD\nA-->B\n"}


def test_close_marker_on_last_line_without_newline():
    text = "```js\nx\n```"
    main, named = asyncio.run(run_demux([sse_fragments(text, 2)], ["js"]))
    assert named == {"js": "x\n"}


def test_languages_are_case_insensitive_and_deduplicated():
    async def scenario():
        result = demux(IterableReader([sse_fragments(PLAN_RESPONSE)]), ["projectplan", "ProjectPlan", "MERMAID"])
        assert list(result.named) == ["projectplan", "mermaid"]
        assert result.get("ProjectPlan") is result.named["projectplan"]
        plan, diagram = await asyncio.gather(collect(result.get("projectplan")), collect(result.get("mermaid")))
        await collect(result.main)
        return plan, diagram

    plan, diagram = asyncio.run(scenario())
    assert plan.startswith("# Timescales\n")
    assert "  - Modular DIY furniture kits\n" in plan
    assert "```" not in plan
    assert diagram == "gantt\n  title Plan\n"


def test_chunking_independence():
    raw = sse_fragments(PLAN_RESPONSE, 7)
    expected_main, expected_named = asyncio.run(run_demux([raw], ["projectplan", "mermaid"]))
    assert expected_main == PLAN_RESPONSE

    rng = random.Random(1234)
    splits = [list(range(1, len(raw)))]  # one character per fragment
    for _ in range(25):
        splits.append(rng.sample(range(1, len(raw)), rng.randint(1, 40)))
    for cuts in splits:
        main, named = asyncio.run(run_demux(split_at(raw, cuts), ["projectplan", "mermaid"]))
        assert main == expected_main
        assert named == expected_named


def test_chunking_independence_for_bytes():
    text = "naïve café ✓\n```js\nconst s = '✓';\n```\n"
    raw = "".join(
        "data: " + json.dumps({"chunk": text[i:i + 5]}, ensure_ascii=False) + "\n\n" for i in range(0, len(text), 5)
    ).encode("utf-8")
    whole_main, whole_named = asyncio.run(run_demux([raw], ["js"]))
    bytewise_main, bytewise_named = asyncio.run(run_demux([raw[i:i + 1] for i in range(len(raw))], ["js"]))
    assert whole_main == bytewise_main == "naïve café ✓\n```js\nconst s = '✓';\n```\n"
    assert whole_named == bytewise_named == {"js": "const s = '✓';\n"}


def test_main_stream_receives_payload_fragments_verbatim():
    async def scenario():
        result = demux(IterableReader([format_sse_frame("a\n"), format_sse_frame("b")]), [])
        return [piece async for piece in result.main]

    assert asyncio.run(scenario()) == ["a\n", "b"]


def test_reopen_continues_on_same_stream():
    text = "```js\nfirst()\n```\nbetween\n```js\nsecond()\n```\n"
    main, named = asyncio.run(run_demux([sse_fragments(text)], ["js"]))
    assert named == {"js": "first()\nsecond()\n"}


def test_close_on_fence_end_drops_reopened_block():
    async def scenario():
        text = "```js\nfirst()\n```\n```js\nsecond()\n```\n"
        result = demux(IterableReader([sse_fragments(text)]), ["js"], DemuxConfig(close_on_fence_end=True))
        js = await collect(result.named["js"])
        main = await collect(result.main)
        return js, main, await result.wait()

    js, main, state = asyncio.run(scenario())
    assert js == "first()\n"
    assert "second()" in main
    assert state == "closed"


def test_source_error_reaches_every_stream():
    boom = ConnectionError("socket closed")

    async def scenario():
        raw = sse_fragments("partial\n```js\nlet x", 4)
        result = demux(FailingReader([raw], boom), ["js", "mermaid"])
        outcomes = await asyncio.gather(
            collect(result.main),
            collect(result.named["js"]),
            collect(result.named["mermaid"]),
            return_exceptions=True,
        )
        return outcomes, await result.wait()

    outcomes, state = asyncio.run(scenario())
    assert all(o is boom for o in outcomes)
    assert state == "errored"


def test_source_error_after_partial_content_is_observed_after_content():
    boom = RuntimeError("upstream died")

    async def scenario():
        result = demux(FailingReader([format_sse_frame("partial ")], boom), [])
        first = await result.main.read()
        with pytest.raises(RuntimeError) as exc:
            await result.main.read()
        return first.value, exc.value

    value, exc = asyncio.run(scenario())
    assert value == "partial "
    assert exc is boom


def test_malformed_frames_are_dropped():
    raw = format_sse_frame("a") + "data: {broken\n\n" + format_sse_frame("b")
    main, _ = asyncio.run(run_demux([raw], []))
    assert main == "ab"


def test_strict_mode_errors_streams():
    async def scenario():
        raw = format_sse_frame("a") + "data: {broken\n\n"
        result = demux(IterableReader([raw]), ["js"], DemuxConfig(strict=True))
        outcomes = await asyncio.gather(collect(result.main), collect(result.named["js"]), return_exceptions=True)
        return outcomes

    outcomes = asyncio.run(scenario())
    assert all(isinstance(o, FrameDecodeError) for o in outcomes)


def test_raw_framing():
    text = "intro\n```sql\nselect 1;\n```\n"
    fragments = [text[i:i + 3] for i in range(0, len(text), 3)]
    main, named = asyncio.run(run_demux(fragments, ["sql"], DemuxConfig(framing="raw")))
    assert main == text
    assert named == {"sql": "select 1;\n"}


def test_async_iterable_source():
    async def frames():
        for piece in ("intro\n", "```js\n", "go()\n", "```\n"):
            await asyncio.sleep(0)
            yield format_sse_frame(piece)

    main, named = asyncio.run(run_demux(frames(), ["js"]))
    assert main == "intro\n```js\ngo()\n```\n"
    assert named == {"js": "go()\n"}


def test_text_stream():
    async def scenario():
        return await collect(text_stream(IterableReader([sse_fragments(PLAN_RESPONSE, 11)])))

    assert asyncio.run(scenario()) == PLAN_RESPONSE


def test_invocations_are_independent():
    async def scenario():
        a = demux(IterableReader([format_sse_frame("```js\nA\n")]), ["js"])
        b = demux(IterableReader([format_sse_frame("B\n```\n")]), ["js"])
        return await asyncio.gather(collect(a.named["js"]), collect(b.named["js"]), collect(a.main), collect(b.main))

    a_js, b_js, _, _ = asyncio.run(scenario())
    assert a_js == "A\n"
    assert b_js == ""
