"""Derive a short conversation title from the first user message."""

import re

from .config import SENTINEL_TITLE

_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`([^`]+)`")
_BOLD = re.compile(r"\*\*([^*]+)\*\*")
_ITALIC = re.compile(r"\*([^*]+)\*")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADING = re.compile(r"#{1,6}\s")
_FIRST_SENTENCE = re.compile(r"^[^.!?]+[.!?]")


def strip_markdown(text: str) -> str:
    """Replace markdown markup with its inner text; code fences become ``[code]``."""
    text = _CODE_FENCE.sub("[code]", text)
    text = _INLINE_CODE.sub(r"\1", text)
    text = _BOLD.sub(r"\1", text)
    text = _ITALIC.sub(r"\1", text)
    text = _LINK.sub(r"\1", text)
    text = _HEADING.sub("", text)
    return text.strip()


def generate_title(message: str, max_length: int = 50) -> str:
    """Return a title for a conversation opened by ``message``.

    Keeps the first sentence when there is one, then caps the length at
    ``max_length``, backing off to a word boundary and appending ``...``.
    """
    title = strip_markdown(message)

    match = _FIRST_SENTENCE.match(title)
    if match:
        title = match.group(0)

    if len(title) > max_length:
        title = title[:max_length].strip()
        last_space = title.rfind(" ")
        if last_space > max_length * 0.8:
            title = title[:last_space]
        title += "..."

    return title or SENTINEL_TITLE
