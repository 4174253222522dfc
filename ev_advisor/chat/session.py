"""
Stream session controller.

One `ChatSession` owns the transcript, the persisted session state and at
most one in-flight submission:

    idle -> sending -> streaming -> completed | failed -> idle

Answer text goes through the `Typewriter`; thoughts are attached to the
assistant entry directly. Transport and agent errors end the submission,
keep whatever text was already revealed and leave a non-empty bubble.
"""
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Optional

import httpx
from loguru import logger

from ev_advisor.chat.frames import (
    AnswerDelta,
    EndEvent,
    ErrorEvent,
    FrameBuffer,
    StreamEvent,
    ThoughtEvent,
    classify,
    parse_frame,
)
from ev_advisor.chat.storage import (
    CONVERSATION_STORAGE_KEY,
    HISTORY_STORAGE_KEY,
    FormValue,
    Storage,
    get_or_create_user_id,
    read_conversation_id,
    read_saved_inputs,
    save_inputs,
)
from ev_advisor.chat.transcript import ThoughtRecord, Transcript, TranscriptEntry, new_id
from ev_advisor.chat.typewriter import RevealHook, Typewriter
from ev_advisor.config import Settings
from ev_advisor.errors import ChatStreamError, ErrorKind

CHAT_PATH = "/api/dify/chat-messages"
PARAMETERS_PATH = "/api/dify/parameters"

OPENING_MESSAGE_ID = "opening-statement-assistant-message"
APOLOGY_TEXT = "抱歉，当前暂时无法完成对话请求，请稍后重试。"
EMPTY_BODY_TEXT = "未收到流式响应数据"
SEND_FAILED_TEXT = "发送消息失败"

ThoughtHook = Callable[[TranscriptEntry, ThoughtRecord], None]


class SessionStatus(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class ChatSession:
    def __init__(
        self,
        http: httpx.AsyncClient,
        storage: Storage,
        base_url: str = "",
        typing_interval: float = 0.018,
        typing_chunk: int = 2,
        on_reveal: Optional[RevealHook] = None,
        on_thought: Optional[ThoughtHook] = None,
        owns_http: bool = False,
    ):
        self.http = http
        self.storage = storage
        self.base_url = base_url.rstrip("/")
        self.on_thought = on_thought
        self._owns_http = owns_http

        self.user_id = get_or_create_user_id(storage)
        self.form_inputs: Dict[str, FormValue] = read_saved_inputs(storage)
        self.conversation_id = read_conversation_id(storage)
        self.transcript = Transcript.from_history(storage.get(HISTORY_STORAGE_KEY))
        self.typewriter = Typewriter(self.transcript, typing_interval, typing_chunk, on_reveal)

        self.status = SessionStatus.IDLE
        self.outcome: Optional[SessionStatus] = None
        self.error: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings: Settings, storage: Storage, **hooks: Any) -> "ChatSession":
        http = httpx.AsyncClient(timeout=settings.request_timeout)
        return cls(
            http,
            storage,
            base_url=settings.chat_base_url,
            typing_interval=settings.typing_interval,
            typing_chunk=settings.typing_chunk,
            owns_http=True,
            **hooks,
        )

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def busy(self) -> bool:
        return self.status in (SessionStatus.SENDING, SessionStatus.STREAMING)

    # -----------------------------
    # Submission
    # -----------------------------
    async def submit(self, question: str) -> bool:
        """Send one question and stream the answer into the transcript.

        Returns False (and does nothing) while another submission is in
        flight or when the question is blank.
        """
        question = question.strip()
        if not question or self.busy:
            return False

        self.error = None
        self.transcript.append(TranscriptEntry.user(question))
        assistant = self.transcript.append(TranscriptEntry.assistant_placeholder())
        self.typewriter.bind(assistant)
        self._save_history()

        self.status = SessionStatus.SENDING
        request = self._task = asyncio.ensure_future(self._stream(question, assistant))
        try:
            await asyncio.shield(request)
        except asyncio.CancelledError:
            logger.info("{}: submission for {} aborted", ErrorKind.NETWORK_ABORT.value, assistant.id)
            self._abort(assistant)
            # cancel() stops only the request; outer cancellation propagates
            if not request.cancelled():
                request.cancel()
                raise
        except ChatStreamError as e:
            self._fail(assistant, e)
        except httpx.HTTPError as e:
            self._fail(assistant, ChatStreamError(ErrorKind.TRANSPORT_ERROR, str(e) or SEND_FAILED_TEXT))
        else:
            self._finish(assistant)
            self.outcome = SessionStatus.COMPLETED
        finally:
            self.typewriter.stop()
            self.status = SessionStatus.IDLE
            self._task = None
            self._save_history()
        return True

    async def _stream(self, question: str, entry: TranscriptEntry) -> None:
        body = {
            "query": question,
            "inputs": self.form_inputs,
            "user": self.user_id,
            "conversationId": self.conversation_id,
        }
        async with self.http.stream("POST", self.base_url + CHAT_PATH, json=body) as response:
            if not response.is_success:
                raise await self._http_error(response)

            self.status = SessionStatus.STREAMING
            frames = FrameBuffer()
            received = False
            async for text in response.aiter_text():
                if not text:
                    continue
                received = True
                for raw in frames.feed(text):
                    frame = parse_frame(raw)
                    if frame is not None:
                        self._dispatch(classify(frame), entry)

            if not received:
                raise ChatStreamError(ErrorKind.EMPTY_RESPONSE_BODY, EMPTY_BODY_TEXT)

            # the last frame may arrive without its blank-line terminator
            tail = parse_frame(frames.tail())
            if tail is not None:
                event = classify(tail)
                if isinstance(event, AnswerDelta) and event.answer:
                    self._track_conversation(event)
                    self.typewriter.enqueue(event.answer)

    @staticmethod
    async def _http_error(response: httpx.Response) -> ChatStreamError:
        await response.aread()
        detail = ""
        try:
            payload = response.json()
        except ValueError:
            detail = response.text.strip()
        else:
            if isinstance(payload, dict) and isinstance(payload.get("error"), str):
                detail = payload["error"]

        message = f"请求失败：{response.status_code}"
        if detail:
            message += f"（{detail[:200]}）"
        return ChatStreamError(ErrorKind.HTTP_ERROR, message, status_code=response.status_code)

    def _dispatch(self, event: StreamEvent, entry: TranscriptEntry) -> None:
        self._track_conversation(event)

        if isinstance(event, ThoughtEvent):
            self._push_thought(entry, event)
        elif isinstance(event, AnswerDelta):
            if event.answer:
                self.typewriter.enqueue(event.answer)
        elif isinstance(event, EndEvent):
            self._finish(entry)
        elif isinstance(event, ErrorEvent):
            raise ChatStreamError(ErrorKind.STREAM_ERROR_EVENT, event.message)
        else:
            logger.debug("Ignoring stream event {!r}", event.name)

    def _push_thought(self, entry: TranscriptEntry, event: ThoughtEvent) -> None:
        text = event.text
        if not text:
            logger.debug("Dropping empty agent_thought")
            return
        if self.transcript.find(entry.id) is None:
            return

        thought = ThoughtRecord(
            id=new_id(entry.id),
            thought=text,
            observation=event.observation,
            tool=event.tool,
            created_at=event.created_at,
        )
        entry.add_thought(thought)
        if self.on_thought is not None:
            self.on_thought(entry, thought)

    def _track_conversation(self, event: StreamEvent) -> None:
        incoming = event.conversation_id
        if incoming and incoming != self.conversation_id:
            self.conversation_id = incoming
            self.storage.set(CONVERSATION_STORAGE_KEY, incoming)

    # -----------------------------
    # Terminal states
    # -----------------------------
    def _finish(self, entry: TranscriptEntry) -> None:
        self.typewriter.flush()
        entry.is_streaming = False

    def _fail(self, entry: TranscriptEntry, err: ChatStreamError) -> None:
        logger.warning("Chat request failed ({}): {}", err.kind.value, err.message)
        self._finish(entry)
        if not entry.content:
            entry.content = APOLOGY_TEXT
        self.error = err.message
        self.outcome = SessionStatus.FAILED

    def _abort(self, entry: TranscriptEntry) -> None:
        # aborts are not reported to the user
        self.typewriter.stop()
        entry.is_streaming = False
        if not entry.content:
            entry.content = APOLOGY_TEXT
        self.outcome = SessionStatus.FAILED

    def cancel(self) -> bool:
        if self._task is None or self._task.done():
            return False
        self._task.cancel()
        return True

    def dismiss_error(self) -> None:
        self.error = None

    # -----------------------------
    # Session state
    # -----------------------------
    async def load_opening_statement(self) -> Optional[TranscriptEntry]:
        """Seed the first assistant message for a brand-new conversation."""
        if self.conversation_id or len(self.transcript) > 0:
            return None

        try:
            response = await self.http.get(self.base_url + PARAMETERS_PATH)
        except httpx.HTTPError as e:
            logger.debug("Parameter fetch failed: {}", e)
            return None
        if not response.is_success:
            logger.debug("Parameter fetch returned {}", response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            return None
        opening = payload.get("openingStatement") if isinstance(payload, dict) else None
        if not isinstance(opening, str) or not opening.strip():
            return None
        if len(self.transcript) > 0:
            return None

        entry = self.transcript.append(
            TranscriptEntry(id=OPENING_MESSAGE_ID, role="assistant", content=opening.strip())
        )
        self._save_history()
        return entry

    def set_inputs(self, inputs: Dict[str, FormValue]) -> None:
        self.form_inputs = dict(inputs)
        save_inputs(self.storage, self.form_inputs)

    def clear_transcript(self) -> None:
        self.transcript.clear()
        self._save_history()

    def reset_conversation(self) -> None:
        self.clear_transcript()
        self.conversation_id = ""
        self.storage.remove(CONVERSATION_STORAGE_KEY)

    def _save_history(self) -> None:
        if len(self.transcript) == 0:
            self.storage.remove(HISTORY_STORAGE_KEY)
        else:
            self.storage.set(HISTORY_STORAGE_KEY, self.transcript.to_history())

    async def aclose(self) -> None:
        self.cancel()
        self.typewriter.stop()
        if self._owns_http:
            await self.http.aclose()
