import json

import pytest

from ev_advisor.chat.storage import (
    FORM_STORAGE_KEY,
    USER_STORAGE_KEY,
    JsonFileStorage,
    MemoryStorage,
    get_or_create_user_id,
    read_conversation_id,
    read_saved_inputs,
)
from ev_advisor.chat.transcript import ThoughtRecord, Transcript, TranscriptEntry


def test_only_one_streaming_entry_allowed() -> None:
    transcript = Transcript()
    transcript.append(TranscriptEntry.assistant_placeholder())
    with pytest.raises(ValueError, match="still streaming"):
        transcript.append(TranscriptEntry.assistant_placeholder())


def test_find_and_order() -> None:
    transcript = Transcript()
    user = transcript.append(TranscriptEntry.user("hi"))
    bot = transcript.append(TranscriptEntry.assistant_placeholder())
    assert [e.id for e in transcript] == [user.id, bot.id]
    assert transcript.find(bot.id) is bot
    assert transcript.streaming_entry() is bot
    assert transcript.find("missing") is None


def test_history_round_trip_drops_thoughts() -> None:
    transcript = Transcript()
    transcript.append(TranscriptEntry(id="u", role="user", content="问", created_at=1000))
    bot = transcript.append(TranscriptEntry(id="a", role="assistant", content="答", created_at=2000))
    bot.add_thought(ThoughtRecord(id="t", thought="想"))

    history = transcript.to_history()
    assert history == [
        {"role": "user", "content": "问", "createdAt": 1000},
        {"role": "assistant", "content": "答", "createdAt": 2000},
    ]

    restored = Transcript.from_history(history)
    assert [(e.id, e.role, e.content, e.thoughts, e.is_streaming) for e in restored] == [
        ("history-1000-0", "user", "问", [], False),
        ("history-2000-1", "assistant", "答", [], False),
    ]


def test_from_history_skips_bad_items() -> None:
    restored = Transcript.from_history(
        [
            {"role": "system", "content": "x"},
            {"role": "user", "content": "   "},
            "junk",
            {"role": "assistant", "content": "ok", "createdAt": "yesterday"},
        ]
    )
    assert len(restored) == 1
    assert restored[0].content == "ok"
    assert isinstance(restored[0].created_at, int)


def test_from_history_non_list() -> None:
    assert len(Transcript.from_history({"role": "user"})) == 0
    assert len(Transcript.from_history(None)) == 0


def test_user_id_is_generated_once() -> None:
    storage = MemoryStorage()
    first = get_or_create_user_id(storage)
    assert first
    assert get_or_create_user_id(storage) == first
    assert storage.get(USER_STORAGE_KEY) == first


def test_read_saved_inputs_filters_shapes() -> None:
    assert read_saved_inputs(MemoryStorage({FORM_STORAGE_KEY: ["a"]})) == {}
    storage = MemoryStorage({FORM_STORAGE_KEY: {"budget": 20, "seats": [5, 7], "note": None}})
    assert read_saved_inputs(storage) == {"budget": 20, "seats": "[5, 7]", "note": None}


def test_read_conversation_id_defaults_to_empty() -> None:
    assert read_conversation_id(MemoryStorage()) == ""


def test_json_file_storage_persists(tmp_path) -> None:
    path = tmp_path / "state" / "chat.json"
    storage = JsonFileStorage(path)
    storage.set("k", {"v": "值"})
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": {"v": "值"}}

    reopened = JsonFileStorage(path)
    assert reopened.get("k") == {"v": "值"}
    reopened.remove("k")
    assert JsonFileStorage(path).get("k") is None


def test_json_file_storage_ignores_corrupt_file(tmp_path) -> None:
    path = tmp_path / "chat.json"
    path.write_text("{not json", encoding="utf-8")
    storage = JsonFileStorage(path)
    assert storage.get("anything") is None
    storage.set("k", 1)
    assert JsonFileStorage(path).get("k") == 1


def test_json_file_storage_removes_key_holding_none(tmp_path) -> None:
    path = tmp_path / "chat.json"
    storage = JsonFileStorage(path)
    storage.set("k", None)
    assert json.loads(path.read_text(encoding="utf-8")) == {"k": None}

    storage.remove("k")
    assert json.loads(path.read_text(encoding="utf-8")) == {}
