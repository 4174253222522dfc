from __future__ import annotations

from typing import List, NamedTuple

from ev_advisor.chat.transcript import ThoughtRecord, TranscriptEntry

THINK_OPEN = "<think>"
THINK_CLOSE = "</think>"


class ThinkSplit(NamedTuple):
    visible: str
    blocks: List[str]
    pending: str


def split_think_blocks(raw: str) -> ThinkSplit:
    """
    Pull `<think>...</think>` spans out of assistant text.

    An unterminated `<think>` means reasoning is still streaming: its text is
    returned as `pending` and nothing after it counts as visible.
    """
    blocks: List[str] = []
    visible = []
    pending = ""
    cursor = 0

    while cursor < len(raw):
        start = raw.find(THINK_OPEN, cursor)
        if start < 0:
            visible.append(raw[cursor:])
            break

        visible.append(raw[cursor:start])
        body_start = start + len(THINK_OPEN)
        end = raw.find(THINK_CLOSE, body_start)
        if end < 0:
            pending = raw[body_start:].strip()
            break

        block = raw[body_start:end].strip()
        if block:
            blocks.append(block)
        cursor = end + len(THINK_CLOSE)

    return ThinkSplit("".join(visible).strip(), blocks, pending)


def thought_to_markdown(thought: ThoughtRecord) -> str:
    text = thought.thought
    if thought.tool:
        text += f"\n工具：{thought.tool}"
    if thought.observation:
        text += f"\n观察：{thought.observation}"
    return text


def reasoning_blocks(entry: TranscriptEntry) -> ThinkSplit:
    """Split an entry for display.

    Inline markers win; structured thoughts fill in only when the text
    carries no completed blocks, so the same reasoning never shows twice.
    """
    if entry.role != "assistant":
        return ThinkSplit(entry.content, [], "")

    split = split_think_blocks(entry.content)
    if split.blocks:
        return split
    return split._replace(blocks=[thought_to_markdown(t) for t in entry.thoughts])
