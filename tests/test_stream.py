"""
Tests for the SSE stream transcoder.
"""
import asyncio
import json

import pytest

from apps.orchestrator.stream import DONE_FRAME, sse_event, transcode
from src.services.exceptions import ReasoningUnavailable


class FragmentSource:
    """Async generator wrapper that records how far it was consumed and whether it was closed."""

    def __init__(self, fragments, error=None):
        self.fragments = list(fragments)
        self.error = error
        self.produced = 0
        self.closed = False

    async def __call__(self):
        try:
            for fragment in self.fragments:
                self.produced += 1
                yield fragment
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


def _contents(frames):
    return [json.loads(f[len("data: "):])["content"] for f in frames if f.startswith("data: {")]


class TestTranscode:
    """Frame formatting and the [DONE] sentinel on every exit path."""

    @pytest.mark.asyncio
    async def test_frames_then_sentinel(self):
        source = FragmentSource(["Hello", " world"])

        frames = [f async for f in transcode(source())]

        assert _contents(frames) == ["Hello", " world"]
        assert frames[-1] == DONE_FRAME
        assert source.closed is True

    @pytest.mark.asyncio
    async def test_empty_fragments_skipped(self):
        source = FragmentSource(["a", "", "b"])

        frames = [f async for f in transcode(source())]

        assert _contents(frames) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_disconnect_after_two_of_five_fragments(self):
        source = FragmentSource(["1", "2", "3", "4", "5"])
        sent = []

        async def is_disconnected():
            return len(sent) >= 2

        frames = []
        async for frame in transcode(source(), is_disconnected=is_disconnected):
            frames.append(frame)
            if frame.startswith("data: {"):
                sent.append(frame)

        assert _contents(frames) == ["1", "2"]
        assert frames[-1] == DONE_FRAME
        assert source.closed is True
        assert source.produced == 3

    @pytest.mark.asyncio
    async def test_source_error_emits_error_frame_then_sentinel(self):
        source = FragmentSource(["partial"], error=ReasoningUnavailable())

        frames = [f async for f in transcode(source())]

        assert _contents(frames) == ["partial"]
        assert frames[-2] == sse_event("error", {
            "code": "reasoning_unavailable",
            "message": ReasoningUnavailable.default_message,
        })
        assert frames[-1] == DONE_FRAME
        assert source.closed is True

    @pytest.mark.asyncio
    async def test_unexpected_error_is_masked(self):
        source = FragmentSource([], error=KeyError("secret-internal-id"))

        frames = [f async for f in transcode(source())]

        assert frames[0].startswith("event: error\n")
        assert "internal_error" in frames[0]
        assert "secret-internal-id" not in frames[0]
        assert frames[-1] == DONE_FRAME

    @pytest.mark.asyncio
    async def test_cancellation_closes_source(self):
        started = asyncio.Event()

        class SlowSource:
            closed = False

            async def gen(self):
                try:
                    yield "first"
                    started.set()
                    await asyncio.sleep(3600)
                    yield "never"
                finally:
                    SlowSource.closed = True

        slow = SlowSource()

        async def consume():
            async for _ in transcode(slow.gen()):
                pass

        task = asyncio.create_task(consume())
        await asyncio.wait_for(started.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert SlowSource.closed is True
