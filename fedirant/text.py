import re
import textwrap
from dataclasses import dataclass
from typing import List, Tuple

from .models import Post

_HASHTAG_RE = re.compile(r"#[a-z0-9_]+", re.IGNORECASE)


def split_content_and_tags(content: str) -> Tuple[str, List[str]]:
    """Separate hashtags from the body text; tags come back lower-cased and unique."""
    tags: List[str] = []
    for t in _HASHTAG_RE.findall(content or ""):
        low = t.lower()
        if low not in tags:
            tags.append(low)
    cleaned = []
    for line in (content or "").split("\n"):
        line = _HASHTAG_RE.sub("", line)
        cleaned.append(" ".join(line.split()))
    return "\n".join(cleaned).strip(), tags


def strip_hashtag(content: str, tag: str) -> str:
    """Remove ``#tag`` (any case) so an edit starts from what the user typed."""
    tag = (tag or "").strip().lstrip("#")
    if not tag:
        return (content or "").strip()
    pattern = re.compile(r"#" + re.escape(tag) + r"\b", re.IGNORECASE)
    return pattern.sub("", content or "").strip()


def summarize(text: str, limit: int = 50) -> str:
    text = " ".join((text or "").split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def wrap_text(text: str, width: int) -> List[str]:
    width = max(width, 1)
    lines: List[str] = []
    for raw in text.split("\n"):
        lines.extend(textwrap.wrap(raw, width) or [""])
    return lines


def estimate_wrapped_lines(text: str, width: int) -> int:
    width = max(width, 1)
    total = 0
    for line in text.split("\n"):
        total += (len(line) - 1) // width + 1 if line else 1
    return max(total, 1)


def split_handle(handle: str) -> Tuple[str, str]:
    """'alice@example.social' -> ('alice', 'example.social')."""
    handle = (handle or "").strip()
    if not handle:
        return "", ""
    local, _, domain = handle.partition("@")
    return local.strip() or handle, domain.strip()


@dataclass
class CardLayout:
    body: List[str]
    tags: List[str]
    has_media: bool

    @property
    def height(self) -> int:
        # border + header + body + meta, optional tag block and media line
        lines = 2 + 1 + len(self.body) + 1
        if self.tags:
            lines += 3
        if self.has_media:
            lines += 1
        return lines


def card_layout(post: Post, body_width: int) -> CardLayout:
    content, tags = split_content_and_tags(post.content)
    if not content.strip() and post.attachments:
        content = "(media post)"
    lines = wrap_text(content, max(body_width, 12))
    if len(lines) > 2:
        lines = lines[:2]
        lines[1] = lines[1] + "..."
    return CardLayout(body=lines, tags=tags, has_media=bool(post.attachments))
