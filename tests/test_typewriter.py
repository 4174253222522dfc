import asyncio

import pytest

from ev_advisor.chat.transcript import Transcript, TranscriptEntry
from ev_advisor.chat.typewriter import Typewriter


def _setup(interval: float = 10.0, chunk_size: int = 2):
    transcript = Transcript()
    entry = transcript.append(TranscriptEntry(id="a1", role="assistant", is_streaming=True))
    revealed = []
    tw = Typewriter(transcript, interval=interval, chunk_size=chunk_size, on_reveal=lambda e, t: revealed.append(t))
    tw.bind(entry)
    return transcript, entry, tw, revealed


@pytest.mark.asyncio
async def test_flush_before_any_tick_moves_everything() -> None:
    _, entry, tw, _ = _setup()
    tw.enqueue("AB")
    tw.enqueue("CD")
    tw.flush()
    assert entry.content == "ABCD"
    assert tw.pending == ""
    tw.stop()


@pytest.mark.asyncio
async def test_second_flush_is_a_noop() -> None:
    _, entry, tw, revealed = _setup()
    tw.enqueue("XYZ")
    tw.flush()
    tw.flush()
    assert entry.content == "XYZ"
    assert revealed == ["XYZ"]
    tw.stop()


@pytest.mark.asyncio
async def test_tick_reveals_fixed_size_chunks() -> None:
    _, entry, tw, revealed = _setup(chunk_size=2)
    tw.enqueue("ABCDE")
    tw.tick()
    assert entry.content == "AB"
    assert tw.pending == "CDE"
    tw.tick()
    tw.tick()
    tw.tick()
    assert entry.content == "ABCDE"
    assert revealed == ["AB", "CD", "E"]
    tw.stop()


@pytest.mark.asyncio
async def test_background_task_drains_and_stops() -> None:
    _, entry, tw, _ = _setup(interval=0.001)
    tw.enqueue("推荐车型A，续航长")
    assert tw.running
    for _ in range(200):
        if not tw.running:
            break
        await asyncio.sleep(0.005)
    assert entry.content == "推荐车型A，续航长"
    assert not tw.running


def test_enqueue_without_target_raises() -> None:
    tw = Typewriter(Transcript())
    with pytest.raises(RuntimeError, match="no target"):
        tw.enqueue("x")


@pytest.mark.asyncio
async def test_rebinding_does_not_touch_previous_entry() -> None:
    transcript, first, tw, _ = _setup()
    tw.enqueue("old")
    first.is_streaming = False
    second = transcript.append(TranscriptEntry(id="a2", role="assistant", is_streaming=True))
    tw.bind(second)
    tw.enqueue("new")
    tw.flush()
    assert first.content == ""
    assert second.content == "new"
    tw.stop()


@pytest.mark.asyncio
async def test_cleared_transcript_drops_pending_text() -> None:
    transcript, entry, tw, revealed = _setup()
    tw.enqueue("late text")
    transcript.clear()
    tw.tick()
    tw.flush()
    assert entry.content == ""
    assert tw.pending == ""
    assert revealed == []
    tw.stop()


def test_chunk_size_must_be_positive() -> None:
    with pytest.raises(ValueError):
        Typewriter(Transcript(), chunk_size=0)
