from dataclasses import dataclass, field, fields
from typing import List, Tuple


@dataclass(frozen=True)
class KeyBinding:
    keys: Tuple[str, ...]
    help_key: str = ""
    help: str = ""

    def matches(self, key: str) -> bool:
        return key in self.keys


def _b(*keys: str, label: str = "", help: str = "") -> KeyBinding:
    return KeyBinding(tuple(keys), label or "/".join(keys), help)


@dataclass(frozen=True)
class KeyMap:
    """Key tokens for every engine action. Tokens are single characters or
    key names such as ``enter`` and ``escape``."""

    up: KeyBinding = field(default_factory=lambda: _b("up", "k", label="↑/k", help="up"))
    down: KeyBinding = field(default_factory=lambda: _b("down", "j", label="↓/j", help="down"))
    open_detail: KeyBinding = field(default_factory=lambda: _b("enter", help="open thread"))
    back: KeyBinding = field(default_factory=lambda: _b("escape", "q", label="esc/q", help="back"))
    home: KeyBinding = field(default_factory=lambda: _b("h", help="home"))
    refresh: KeyBinding = field(default_factory=lambda: _b("r", help="refresh"))
    load_more: KeyBinding = field(default_factory=lambda: _b("m", help="load more"))
    new_post: KeyBinding = field(default_factory=lambda: _b("n", help="new post"))
    reply: KeyBinding = field(default_factory=lambda: _b("c", help="reply"))
    edit: KeyBinding = field(default_factory=lambda: _b("e", help="edit own post"))
    delete: KeyBinding = field(default_factory=lambda: _b("d", help="delete own post"))
    like: KeyBinding = field(default_factory=lambda: _b("l", help="like"))
    follow: KeyBinding = field(default_factory=lambda: _b("f", help="follow/unfollow"))
    profile: KeyBinding = field(default_factory=lambda: _b("p", help="author profile"))
    own_profile: KeyBinding = field(default_factory=lambda: _b("P", help="my profile"))
    edit_profile: KeyBinding = field(default_factory=lambda: _b("v", help="edit profile"))
    open_url: KeyBinding = field(default_factory=lambda: _b("o", help="open in browser"))
    toggle_preview: KeyBinding = field(default_factory=lambda: _b("i", help="media preview"))
    open_media: KeyBinding = field(default_factory=lambda: _b("I", help="open media"))
    next_tab: KeyBinding = field(default_factory=lambda: _b("t", help="next feed"))
    prev_tab: KeyBinding = field(default_factory=lambda: _b("T", help="previous feed"))
    set_hashtag: KeyBinding = field(default_factory=lambda: _b("H", help="set hashtag"))
    hide_post: KeyBinding = field(default_factory=lambda: _b("x", help="hide post"))
    show_hidden: KeyBinding = field(default_factory=lambda: _b("X", help="toggle hidden"))
    block: KeyBinding = field(default_factory=lambda: _b("b", help="block user"))
    blocked_list: KeyBinding = field(default_factory=lambda: _b("B", help="blocked users"))
    parent: KeyBinding = field(default_factory=lambda: _b("u", help="jump to parent"))
    hints: KeyBinding = field(default_factory=lambda: _b("?", help="all keys"))
    scroll_left: KeyBinding = field(default_factory=lambda: _b("left", label="←", help="scroll left"))
    scroll_right: KeyBinding = field(default_factory=lambda: _b("right", label="→", help="scroll right"))
    confirm: KeyBinding = field(default_factory=lambda: _b("y", help="confirm"))
    cancel: KeyBinding = field(default_factory=lambda: _b("n", help="cancel"))

    def all(self) -> List[KeyBinding]:
        return [getattr(self, f.name) for f in fields(self)]


DEFAULT_KEYS = KeyMap()

FEED_HINTS = ("up", "down", "open_detail", "like", "reply", "new_post", "next_tab", "refresh", "hints")
DETAIL_HINTS = ("up", "down", "open_detail", "parent", "like", "reply", "back", "hints")
PROFILE_HINTS = ("up", "down", "open_detail", "like", "follow", "back")


def short_hints(keymap: KeyMap, names) -> str:
    parts = []
    for name in names:
        b = getattr(keymap, name)
        parts.append(f"{b.help_key} {b.help}")
    return " • ".join(parts)


def full_hints(keymap: KeyMap) -> List[Tuple[str, str]]:
    return [(b.help_key, b.help) for b in keymap.all() if b.help]
