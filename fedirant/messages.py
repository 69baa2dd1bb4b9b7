"""Messages consumed by the transition engine.

Every asynchronous result and every user intent reaches the engine as one of
the frozen dataclasses below. Anything else passed to ``Model.update`` is a
no-op.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import BlockedUser, Post, Profile


class Message:
    """Base class of the closed message family."""


# --- feed loading ---

@dataclass(frozen=True)
class PostsLoaded(Message):
    posts: List[Post]
    query_key: str
    seq: int
    raw_count: int = 0


@dataclass(frozen=True)
class PostsError(Message):
    error: str
    query_key: str
    seq: int


@dataclass(frozen=True)
class PageLoaded(Message):
    posts: List[Post]
    query_key: str
    seq: int
    raw_count: int = 0


@dataclass(frozen=True)
class PageError(Message):
    error: str
    query_key: str
    seq: int


# --- threads ---

@dataclass(frozen=True)
class ThreadLoaded(Message):
    post_id: str
    ancestors: List[Post] = field(default_factory=list)
    descendants: List[Post] = field(default_factory=list)


@dataclass(frozen=True)
class ThreadError(Message):
    post_id: str
    error: str


@dataclass(frozen=True)
class OpenDetailWithoutReplies(Message):
    post_id: str = ""


@dataclass(frozen=True)
class ResetFeedState(Message):
    force: bool = False


# --- mutation intents ---

@dataclass(frozen=True)
class CreatePost(Message):
    content: str


@dataclass(frozen=True)
class EditPost(Message):
    post_id: str
    content: str


@dataclass(frozen=True)
class ReplyPost(Message):
    parent_id: str
    content: str


@dataclass(frozen=True)
class DeletePost(Message):
    post_id: str


@dataclass(frozen=True)
class LikePost(Message):
    post_id: str
    was_liked: bool


# --- mutation results ---

@dataclass(frozen=True)
class PostResult(Message):
    """Outcome of a create, edit or reply.

    post_id is the id the optimistic item carries (local id for creates and
    replies, server id for edits).
    """

    post_id: str
    post: Optional[Post] = None
    is_edit: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class DeleteResult(Message):
    post_id: str
    error: Optional[str] = None


@dataclass(frozen=True)
class LikeResult(Message):
    post_id: str
    error: Optional[str] = None


# --- relationships, profiles, moderation ---

@dataclass(frozen=True)
class RelationshipsLoaded(Message):
    following: Dict[str, bool] = field(default_factory=dict)
    error: Optional[str] = None


@dataclass(frozen=True)
class ProfileLoaded(Message):
    account_id: str = ""
    profile: Optional[Profile] = None
    posts: List[Post] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class ProfileForEditLoaded(Message):
    profile: Optional[Profile] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class SaveProfile(Message):
    display_name: str
    bio: str


@dataclass(frozen=True)
class ProfileSaved(Message):
    error: Optional[str] = None


@dataclass(frozen=True)
class FollowResult(Message):
    account_id: str
    handle: str
    follow: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class BlockResult(Message):
    account_id: str
    handle: str
    error: Optional[str] = None


@dataclass(frozen=True)
class HideAuthorPosts(Message):
    account_id: str


@dataclass(frozen=True)
class BlockedUsersLoaded(Message):
    users: List[BlockedUser] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class UnblockResult(Message):
    account_id: str
    handle: str
    error: Optional[str] = None


@dataclass(frozen=True)
class PrefsSaved(Message):
    error: Optional[str] = None


# --- media ---

@dataclass(frozen=True)
class MediaPreviewLoaded(Message):
    key: str
    preview: str = ""
    frames: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass(frozen=True)
class MediaTick(Message):
    pass


# --- host input ---

@dataclass(frozen=True)
class KeyPressed(Message):
    """A key token: a printable character ("j", "T", "?") or a key name
    ("enter", "escape", "up", "down", "backspace")."""

    key: str


@dataclass(frozen=True)
class Resized(Message):
    width: int
    height: int
