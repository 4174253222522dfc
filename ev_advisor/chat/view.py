from __future__ import annotations

from datetime import datetime
from typing import Iterable

from ev_advisor.chat.markdown import escape_html, markdown_to_html
from ev_advisor.chat.think import reasoning_blocks
from ev_advisor.chat.transcript import TranscriptEntry

ROLE_LABELS = {"assistant": "AI 助手", "user": "你"}


def render_entry(entry: TranscriptEntry) -> str:
    split = reasoning_blocks(entry)
    badge = '<span class="badge">思考中</span>' if entry.is_streaming else ""

    parts = [
        f'<div class="msg {entry.role}" id="{escape_html(entry.id)}">',
        f'<div class="meta"><span>{ROLE_LABELS[entry.role]}</span>{badge}</div>',
        f'<div class="md">{markdown_to_html(split.visible or "...")}</div>',
    ]

    if entry.role == "assistant" and (split.blocks or split.pending):
        parts.append('<div class="thinking">')
        for block in split.blocks:
            parts.append(f'<details><summary>思考过程</summary><div class="md">{markdown_to_html(block)}</div></details>')
        if split.pending:
            parts.append(f'<details open><summary>思考中…</summary><div class="md">{markdown_to_html(split.pending)}</div></details>')
        parts.append("</div>")

    parts.append("</div>")
    return "".join(parts)


_PAGE = """<!doctype html>
<html lang="zh-CN">
<head>
  <meta charset="utf-8"/>
  <title>{title}</title>
  <style>
    body{{ margin:0; background:#000; color:#e5e7eb;
      font-family: -apple-system, system-ui, Segoe UI, Roboto, Helvetica, Arial, sans-serif; }}
    .wrap{{ max-width: 880px; margin: 0 auto; padding: 28px 18px; }}
    .msg{{ border:1px solid rgba(255,255,255,0.10); border-radius:14px; padding:12px 14px; margin:10px 0; }}
    .msg.user{{ background: rgba(34,197,94,0.10); text-align:right; }}
    .msg.assistant{{ background: rgba(255,255,255,0.04); }}
    .meta{{ font-size:12px; color:#9ca3af; margin-bottom:6px; }}
    .badge{{ margin-left:8px; color:#86efac; }}
    .thinking details{{ margin-top:8px; font-size:13px; color:#9ca3af; }}
    pre.code{{ overflow-x:auto; background: rgba(0,0,0,0.5); padding:12px; border-radius:8px; }}
    a{{ color:#93c5fd; }}
  </style>
</head>
<body>
<div class="wrap">
<h1>{title}</h1>
<p class="meta">{subtitle}</p>
{body}
</div>
</body>
</html>
"""


def render_transcript(
    entries: Iterable[TranscriptEntry],
    title: str = "智能选车对话",
    conversation_id: str = "",
) -> str:
    entries = list(entries)
    subtitle = f"会话ID：{conversation_id or '未建立'} · 导出时间：{datetime.now():%Y-%m-%d %H:%M}"
    body = "\n".join(render_entry(e) for e in entries) or '<p class="meta">暂无对话记录</p>'
    return _PAGE.format(title=escape_html(title), subtitle=escape_html(subtitle), body=body)
