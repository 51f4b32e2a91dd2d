"""Telegram HTML formatting and message chunking."""

from __future__ import annotations

import html
import re

TELEGRAM_MAX_MESSAGE_LENGTH = 4096

_TAG_RE = re.compile(r"<(/?)([a-zA-Z]+)\b[^>]*>")
_ENTITY_TAIL_RE = re.compile(r"&#?\w{0,8}$")


def to_telegram_html(text: str) -> str:
    """Rewrite leftover markdown into the HTML subset Telegram accepts."""

    text = re.sub(r"```(?:\w+)?\n?(.*?)```", r"<pre>\1</pre>", text, flags=re.DOTALL)
    text = re.sub(r"`([^`\n]+)`", r"<code>\1</code>", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", text, flags=re.DOTALL)
    text = re.sub(r"(?<![\w*])\*(?!\s)([^*\n]+?)\*(?!\w)", r"<i>\1</i>", text)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"<b>\1</b>", text, flags=re.MULTILINE)
    text = re.sub(r"\[([^\]]+)\]\((https?://[^)\s]+)\)", r'<a href="\2">\1</a>', text)
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</?p>", "\n", text, flags=re.IGNORECASE)
    return text.strip()


def strip_html(text: str) -> str:
    """Plain-text fallback for chunks Telegram refuses to parse."""

    return html.unescape(re.sub(r"<[^>]+>", "", text))


def chunk_message(text: str, limit: int = TELEGRAM_MAX_MESSAGE_LENGTH) -> list[str]:
    """Split ``text`` into chunks of at most ``limit`` characters.

    Splits prefer paragraph, then line, then word boundaries and never cut
    through an HTML tag or entity. Tags left open at a split are closed at
    the end of the chunk and re-opened at the start of the next.
    """
    if not text:
        return []
    if len(text) <= limit:
        return [text]

    chunks: list[str] = []
    carried: list[tuple[str, str]] = []
    rest = text
    while rest.strip():
        prefix = "".join(tag for _, tag in carried)
        if len(prefix) >= limit // 2:
            # Re-opened tags would crowd out the text; continue without them.
            carried, prefix = [], ""
        room = limit - len(prefix)
        while True:
            head, tail = _split(rest, room)
            stack = _open_tags(carried, head)
            suffix = "".join(f"</{name}>" for name, _ in reversed(stack))
            overflow = len(prefix) + len(head) + len(suffix) - limit
            if overflow <= 0 or room <= 1:
                break
            room = max(room - overflow, 1)
        if head:
            chunks.append(f"{prefix}{head}{suffix}")
        carried = stack
        rest = tail
    return chunks


def _split(text: str, room: int) -> tuple[str, str]:
    if len(text) <= room:
        return text, ""
    cut = _find_cut(text, room)
    return text[:cut].rstrip(), text[cut:].lstrip()


def _find_cut(text: str, limit: int) -> int:
    for separator in ("\n\n", "\n", " "):
        index = text.rfind(separator, 0, limit)
        while index > 0 and _inside_markup(text, index):
            index = text.rfind(separator, 0, index)
        if index > 0:
            return index
    cut = limit
    if _inside_markup(text, cut):
        tag_start = text.rfind("<", 0, cut)
        entity_start = text.rfind("&", 0, cut)
        cut = tag_start if tag_start > text.rfind(">", 0, cut) else entity_start
    return cut if cut > 0 else limit


def _inside_markup(text: str, pos: int) -> bool:
    if text.rfind("<", 0, pos) > text.rfind(">", 0, pos):
        return True
    amp = text.rfind("&", 0, pos)
    return amp > text.rfind(";", 0, pos) and bool(_ENTITY_TAIL_RE.match(text[amp:pos]))


def _open_tags(carried: list[tuple[str, str]], piece: str) -> list[tuple[str, str]]:
    """Tags still open after ``piece``, as (name, opening tag) pairs."""

    stack = list(carried)
    for match in _TAG_RE.finditer(piece):
        closing, name = match.group(1), match.group(2).lower()
        if not closing:
            stack.append((name, match.group(0)))
            continue
        for i in range(len(stack) - 1, -1, -1):
            if stack[i][0] == name:
                del stack[i]
                break
    return stack
