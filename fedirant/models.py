from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

# Page sizes and thresholds shared by the engine and the commands.
PAGE_SIZE = 20
REPLY_PAGE_SIZE = 20
PREFETCH_TRIGGER = 3
DEFAULT_HASHTAG = "terminalrant"

LOCAL_ID_PREFIX = "local-"
LOCAL_REPLY_PREFIX = "local-reply-"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


@dataclass
class MediaAttachment:
    id: str = ""
    kind: str = ""  # image, video, gifv, audio, unknown
    url: str = ""
    preview_url: str = ""
    description: str = ""
    width: int = 0
    height: int = 0


@dataclass
class Post:
    id: str
    account_id: str = ""
    author: str = ""  # display name
    handle: str = ""  # acct, without the leading @
    content: str = ""
    timestamp: datetime = _EPOCH
    url: str = ""
    liked_by_user: bool = False
    likes: int = 0
    comments: int = 0
    in_reply_to_id: str = ""
    attachments: List[MediaAttachment] = field(default_factory=list)
    is_own: bool = False

    @property
    def is_reply(self) -> bool:
        return self.in_reply_to_id not in ("", "0", "None", "<nil>")


@dataclass
class Profile:
    id: str = ""
    handle: str = ""
    display_name: str = ""
    bio: str = ""
    avatar_url: str = ""
    posts_count: int = 0
    followers: int = 0
    following: int = 0


@dataclass
class BlockedUser:
    account_id: str
    handle: str = ""
    display_name: str = ""


class ItemStatus(Enum):
    NORMAL = "normal"
    PENDING_CREATE = "pending-create"
    PENDING_UPDATE = "pending-update"
    PENDING_DELETE = "pending-delete"
    FAILED = "failed"

    @property
    def is_pending(self) -> bool:
        return self in (ItemStatus.PENDING_CREATE, ItemStatus.PENDING_UPDATE, ItemStatus.PENDING_DELETE)


@dataclass
class FeedItem:
    """A loaded post plus its local optimistic overlay."""

    post: Post
    status: ItemStatus = ItemStatus.NORMAL
    error: Optional[str] = None
    old_content: str = ""


class FeedSource(Enum):
    PRIMARY = "terminalrant"
    TRENDING = "trending"
    FOLLOWING = "following"
    CUSTOM = "custom"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FeedSource":
        """Map a persisted source value back to a view.

        Older state files stored the following view as "personal".
        """
        v = (value or "").strip().lower()
        if v == "trending":
            return cls.TRENDING
        if v in ("following", "personal"):
            return cls.FOLLOWING
        if v == "custom":
            return cls.CUSTOM
        return cls.PRIMARY


def normalize_hashtag(tag: Optional[str]) -> str:
    return (tag or "").strip().lstrip("#").strip()
