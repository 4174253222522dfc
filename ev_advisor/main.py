import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from ev_advisor.chat.session import APOLOGY_TEXT, PARAMETERS_PATH, ChatSession
from ev_advisor.chat.storage import (
    CONVERSATION_STORAGE_KEY,
    HISTORY_STORAGE_KEY,
    FormValue,
    JsonFileStorage,
    read_saved_inputs,
    save_inputs,
)
from ev_advisor.chat.transcript import ThoughtRecord, Transcript, TranscriptEntry
from ev_advisor.chat.view import render_transcript
from ev_advisor.config import SETTINGS
from ev_advisor.logger import setup_logger


USAGE = """
ev-advisor serve                 run the chat proxy (needs DIFY_EV_AGENT)
ev-advisor chat                  interactive chat against the proxy
ev-advisor chat "question"       ask one question
ev-advisor params                show the agent's requirement form
ev-advisor form key=value ...    save requirement answers sent with every question
ev-advisor history               print the saved transcript
ev-advisor export out.html       write the saved transcript as HTML
ev-advisor reset                 forget the conversation and transcript
"""


def _print_reveal(entry: TranscriptEntry, text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _print_thought(entry: TranscriptEntry, thought: ThoughtRecord) -> None:
    line = f"[思考] {thought.thought}"
    if thought.tool:
        line += f"  (工具：{thought.tool})"
    print(line)


def _open_session(storage: JsonFileStorage) -> ChatSession:
    return ChatSession.from_settings(SETTINGS, storage, on_reveal=_print_reveal, on_thought=_print_thought)


async def _ask(session: ChatSession, question: str) -> None:
    print("AI 助手：")
    if not await session.submit(question):
        print("(empty question, nothing sent)")
        return
    if session.transcript[-1].content == APOLOGY_TEXT:
        print(APOLOGY_TEXT, end="")
    print("\n")
    if session.error:
        print(f"[错误] {session.error}\n")
        session.dismiss_error()


async def run_chat(question: Optional[str]) -> None:
    storage = JsonFileStorage(SETTINGS.state_file)
    async with _open_session(storage) as session:
        opening = await session.load_opening_statement()
        if opening is not None:
            print(f"AI 助手：\n{opening.content}\n")

        if question:
            await _ask(session, question)
            return

        while True:
            try:
                q = await asyncio.to_thread(input, "你：")
            except (EOFError, KeyboardInterrupt):
                print()
                return
            if q.strip().lower() in {"exit", "quit"}:
                return
            await _ask(session, q)


async def show_params() -> None:
    async with httpx.AsyncClient(timeout=SETTINGS.request_timeout) as http:
        resp = await http.get(SETTINGS.chat_base_url + PARAMETERS_PATH)
    if not resp.is_success:
        print(f"Request failed ({resp.status_code}): {resp.text[:500]}")
        return
    print(json.dumps(resp.json(), ensure_ascii=False, indent=2))


def parse_form_args(args: List[str]) -> Dict[str, FormValue]:
    values: Dict[str, FormValue] = {}
    for arg in args:
        if "=" not in arg:
            raise ValueError(f"Expected key=value, got {arg!r}")
        key, raw = arg.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError(f"Missing key in {arg!r}")
        try:
            value = json.loads(raw)
        except ValueError:
            value = raw
        values[key] = value if value is None or isinstance(value, (str, int, float, bool)) else raw
    return values


async def reset() -> None:
    async with _open_session(JsonFileStorage(SETTINGS.state_file)) as session:
        session.reset_conversation()


def main():
    if len(sys.argv) < 2:
        print(USAGE)
        return

    setup_logger(SETTINGS.log_level)
    cmd = sys.argv[1].lower().strip()

    if cmd == "serve":
        import uvicorn

        uvicorn.run("ev_advisor.server:app", host=SETTINGS.host, port=SETTINGS.port)
        return

    if cmd == "chat":
        q = " ".join(sys.argv[2:]).strip()
        asyncio.run(run_chat(q or None))
        return

    if cmd == "params":
        asyncio.run(show_params())
        return

    storage = JsonFileStorage(SETTINGS.state_file)

    if cmd == "form":
        try:
            updates = parse_form_args(sys.argv[2:])
        except ValueError as e:
            print(f"{e}\n", USAGE)
            return
        inputs = {**read_saved_inputs(storage), **updates}
        save_inputs(storage, inputs)
        print(json.dumps(inputs, ensure_ascii=False, indent=2))
        return

    if cmd == "history":
        transcript = Transcript.from_history(storage.get(HISTORY_STORAGE_KEY))
        if not len(transcript):
            print("No saved conversation.")
        for entry in transcript:
            who = "AI 助手" if entry.role == "assistant" else "你"
            print(f"{who}：\n{entry.content}\n")
        return

    if cmd == "export":
        if len(sys.argv) < 3:
            print("Missing output file.\n", USAGE)
            return
        out = Path(sys.argv[2])
        transcript = Transcript.from_history(storage.get(HISTORY_STORAGE_KEY))
        conversation_id = storage.get(CONVERSATION_STORAGE_KEY) or ""
        out.write_text(render_transcript(transcript, conversation_id=conversation_id), encoding="utf-8")
        print(f"OK: wrote {len(transcript)} messages to {out}")
        return

    if cmd == "reset":
        asyncio.run(reset())
        print("OK: conversation cleared")
        return

    print(USAGE)


if __name__ == "__main__":
    main()
