from __future__ import annotations

import html
import re
from typing import List

CODE_FENCE_RE = re.compile(r"```([\w-]*)\n([\s\S]*?)```")
CODE_TOKEN_RE = re.compile(r"@@CODE_BLOCK_(\d+)@@")
CODE_TOKEN_LINE_RE = re.compile(r"^@@CODE_BLOCK_(\d+)@@$")

HEADING_RE = re.compile(r"^(#{1,3})\s+(.+)$")
QUOTE_RE = re.compile(r"^>\s+(.+)$")
BULLET_RE = re.compile(r"^[-*]\s+")
ORDERED_RE = re.compile(r"^\d+\.\s+")

LINK_RE = re.compile(r"\[([^\]]+)\]\((https?://[^\s)]+)\)")
INLINE_CODE_RE = re.compile(r"`([^`]+)`")
INLINE_TOKEN_RE = re.compile(r"@@INLINE_CODE_(\d+)@@")
BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
ITALIC_RE = re.compile(r"\*([^*]+)\*")

HEADING_TAGS = {1: "h2", 2: "h3", 3: "h4"}


def escape_html(raw: str) -> str:
    return html.escape(raw, quote=True)


def render_inline(raw: str) -> str:
    text = escape_html(raw)
    text = LINK_RE.sub(r'<a href="\2" target="_blank" rel="noopener noreferrer">\1</a>', text)

    spans: List[str] = []

    def _stash(m: re.Match) -> str:
        spans.append(f"<code>{m.group(1)}</code>")
        return f"@@INLINE_CODE_{len(spans) - 1}@@"

    text = INLINE_CODE_RE.sub(_stash, text)
    text = BOLD_RE.sub(r"<strong>\1</strong>", text)
    text = ITALIC_RE.sub(r"<em>\1</em>", text)
    return INLINE_TOKEN_RE.sub(lambda m: _restore(spans, m), text)


def _restore(stash: List[str], m: re.Match) -> str:
    index = int(m.group(1))
    return stash[index] if index < len(stash) else m.group(0)


def _is_structural(line: str) -> bool:
    return bool(
        CODE_TOKEN_LINE_RE.match(line)
        or HEADING_RE.match(line)
        or QUOTE_RE.match(line)
        or BULLET_RE.match(line)
        or ORDERED_RE.match(line)
    )


def markdown_to_html(markdown: str) -> str:
    """
    Render the Markdown subset the agent produces into an HTML fragment.

    Fenced code is pulled out into tokens before anything else runs and only
    restored at the very end, so its content is escaped exactly once and never
    touched by the block or inline rules.
    """
    if not markdown.strip():
        return ""

    code_blocks: List[str] = []

    def _fence(m: re.Match) -> str:
        lang = m.group(1)
        lang_class = f' class="language-{escape_html(lang)}"' if lang else ""
        code_blocks.append(f'<pre class="code"><code{lang_class}>{escape_html(m.group(2))}</code></pre>')
        return f"@@CODE_BLOCK_{len(code_blocks) - 1}@@"

    source = CODE_FENCE_RE.sub(_fence, markdown.replace("\r\n", "\n"))
    lines = source.split("\n")
    parts: List[str] = []

    i = 0
    while i < len(lines):
        line = lines[i]
        i += 1
        if not line.strip():
            continue

        if CODE_TOKEN_LINE_RE.match(line):
            parts.append(line)
            continue

        m = HEADING_RE.match(line)
        if m:
            tag = HEADING_TAGS[len(m.group(1))]
            parts.append(f"<{tag}>{render_inline(m.group(2))}</{tag}>")
            continue

        m = QUOTE_RE.match(line)
        if m:
            parts.append(f"<blockquote>{render_inline(m.group(1))}</blockquote>")
            continue

        for pattern, tag in ((BULLET_RE, "ul"), (ORDERED_RE, "ol")):
            if pattern.match(line):
                items = [pattern.sub("", line, count=1)]
                while i < len(lines) and pattern.match(lines[i]):
                    items.append(pattern.sub("", lines[i], count=1))
                    i += 1
                lis = "".join(f"<li>{render_inline(item)}</li>" for item in items)
                parts.append(f"<{tag}>{lis}</{tag}>")
                break
        else:
            para = [line]
            while i < len(lines) and lines[i].strip() and not _is_structural(lines[i]):
                para.append(lines[i])
                i += 1
            parts.append(f"<p>{'<br/>'.join(render_inline(p) for p in para)}</p>")

    out = "".join(parts)
    return CODE_TOKEN_RE.sub(lambda m: _restore(code_blocks, m), out)
