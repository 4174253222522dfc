from __future__ import annotations

import asyncio
from typing import Callable, Optional

from loguru import logger

from ev_advisor.chat.transcript import Transcript, TranscriptEntry

RevealHook = Callable[[TranscriptEntry, str], None]


class Typewriter:
    """
    Reveals queued answer text into one transcript entry at a fixed cadence.

    Network chunks arrive in bursts; `enqueue` only buffers them and a
    background task moves `chunk_size` characters per `interval` seconds.
    The task exits once the buffer drains and is restarted by the next
    `enqueue`. `flush` moves everything at once (end of stream).
    """

    def __init__(
        self,
        transcript: Transcript,
        interval: float = 0.018,
        chunk_size: int = 2,
        on_reveal: Optional[RevealHook] = None,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")
        self.transcript = transcript
        self.interval = interval
        self.chunk_size = chunk_size
        self.on_reveal = on_reveal

        self._pending = ""
        self._target_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> str:
        return self._pending

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def bind(self, entry: TranscriptEntry) -> None:
        self.stop()
        self._target_id = entry.id

    def enqueue(self, text: str) -> None:
        if self._target_id is None:
            raise RuntimeError("Typewriter has no target entry; call bind() first")
        if not text:
            return
        self._pending += text
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while self._pending:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        if not self._pending:
            return
        entry = self._target()
        if entry is None:
            return
        chunk, self._pending = self._pending[: self.chunk_size], self._pending[self.chunk_size:]
        self._reveal(entry, chunk)

    def flush(self) -> None:
        if not self._pending:
            return
        entry = self._target()
        if entry is None:
            return
        remain, self._pending = self._pending, ""
        self._reveal(entry, remain)

    def stop(self) -> None:
        """Cancel the ticking task and forget the target. Unflushed text is dropped."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._pending = ""
        self._target_id = None

    def _target(self) -> Optional[TranscriptEntry]:
        if self._target_id is None:
            return None
        entry = self.transcript.find(self._target_id)
        if entry is None:
            logger.debug("Typewriter target {} is gone, dropping {} chars", self._target_id, len(self._pending))
            self._pending = ""
        return entry

    def _reveal(self, entry: TranscriptEntry, text: str) -> None:
        entry.append_text(text)
        if self.on_reveal is not None:
            self.on_reveal(entry, text)
