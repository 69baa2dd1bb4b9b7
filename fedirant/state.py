from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .models import (
    DEFAULT_HASHTAG,
    BlockedUser,
    FeedItem,
    FeedSource,
    Post,
    Profile,
)
from .threads import ThreadCache


@dataclass
class PaginationState:
    """Paging bookkeeping owned by a single feed view."""

    oldest_id: str = ""
    has_more: bool = True
    seq: int = 0
    loading: bool = False
    loading_more: bool = False


@dataclass
class FeedState:
    default_hashtag: str = DEFAULT_HASHTAG
    hashtag: str = DEFAULT_HASHTAG
    source: FeedSource = FeedSource.PRIMARY
    items: List[FeedItem] = field(default_factory=list)
    cursor: int = 0
    error: Optional[str] = None
    notice: str = ""
    pages: Dict[FeedSource, PaginationState] = field(
        default_factory=lambda: {src: PaginationState() for src in FeedSource}
    )

    @property
    def page(self) -> PaginationState:
        return self.pages[self.source]

    @property
    def loading(self) -> bool:
        return self.page.loading

    @property
    def loading_more(self) -> bool:
        return self.page.loading_more


@dataclass
class HostRequest:
    """Something only the host can do (open a dialog), queued by the engine."""

    kind: str  # "post", "reply", "edit", "profile"
    target_id: str = ""
    text: str = ""
    extra: str = ""  # reply context or profile bio


@dataclass
class UIState:
    width: int = 100
    height: int = 40
    start_index: int = 0
    scroll_line: int = 0
    h_scroll: int = 0
    show_all_hints: bool = False
    hashtag_input: bool = False
    hashtag_buffer: str = ""
    status: str = ""  # transient one-line outcome of the last action
    request: Optional[HostRequest] = None


@dataclass
class DetailState:
    show_detail: bool = False
    confirm_delete: bool = False
    ancestors: List[Post] = field(default_factory=list)
    reply_all: List[Post] = field(default_factory=list)
    reply_visible: int = 0
    has_more_replies: bool = False
    loading_replies: bool = False
    cursor: int = 0  # 0 is the focused post, 1..n the replies
    start: int = 0
    scroll_line: int = 0
    focused: Optional[Post] = None
    view_stack: List[Optional[Post]] = field(default_factory=list)
    thread_cache: ThreadCache = field(default_factory=ThreadCache)

    @property
    def replies(self) -> List[Post]:
        """The revealed prefix of the assembled reply list."""
        return self.reply_all[: self.reply_visible]

    def clear_thread(self, loading: bool = False) -> None:
        self.cursor = 0
        self.start = 0
        self.scroll_line = 0
        self.ancestors = []
        self.reply_all = []
        self.reply_visible = 0
        self.has_more_replies = False
        self.loading_replies = loading


@dataclass
class ModerationState:
    hidden_ids: Set[str] = field(default_factory=set)
    hidden_authors: Set[str] = field(default_factory=set)
    show_hidden: bool = False
    confirm_block: bool = False
    block_account_id: str = ""
    block_handle: str = ""
    show_blocked: bool = False
    loading_blocked: bool = False
    blocked_error: Optional[str] = None
    blocked_users: List[BlockedUser] = field(default_factory=list)
    blocked_cursor: int = 0
    confirm_unblock: bool = False
    unblock_target: Optional[BlockedUser] = None

    def cancel_block(self) -> None:
        self.confirm_block = False
        self.block_account_id = ""
        self.block_handle = ""

    def close_blocked(self) -> None:
        self.show_blocked = False
        self.confirm_unblock = False
        self.unblock_target = None


@dataclass
class RelationshipState:
    confirm_follow: bool = False
    follow_account_id: str = ""
    follow_handle: str = ""
    follow_target: bool = False
    following_by_id: Dict[str, bool] = field(default_factory=dict)
    recent_follows: List[str] = field(default_factory=list)
    following_dirty: bool = False

    def cancel_follow(self) -> None:
        self.confirm_follow = False
        self.follow_account_id = ""
        self.follow_handle = ""
        self.follow_target = False

    def is_following(self, account_id: str) -> bool:
        account_id = (account_id or "").strip()
        return bool(account_id) and self.following_by_id.get(account_id, False)

    def add_recent_follow(self, account_id: str, limit: int = 20) -> None:
        account_id = account_id.strip()
        if not account_id:
            return
        rest = [a for a in self.recent_follows if a != account_id]
        self.recent_follows = ([account_id] + rest)[:limit]

    def remove_recent_follow(self, account_id: str) -> None:
        account_id = account_id.strip()
        self.recent_follows = [a for a in self.recent_follows if a != account_id]


@dataclass
class ProfileState:
    show_profile: bool = False
    return_to_profile: bool = False
    is_own: bool = False
    loading: bool = False
    error: Optional[str] = None
    profile: Profile = field(default_factory=Profile)
    posts: List[Post] = field(default_factory=list)
    cursor: int = 0  # 0 is the profile card, 1..n the posts
    start: int = 0

    def open(self, is_own: bool) -> None:
        self.show_profile = True
        self.is_own = is_own
        self.loading = True
        self.error = None
        self.profile = Profile()
        self.posts = []
        self.cursor = 0
        self.start = 0

    def close(self) -> None:
        self.show_profile = False
        self.return_to_profile = False
        self.is_own = False
        self.loading = False
        self.error = None
        self.profile = Profile()
        self.posts = []
        self.cursor = 0
        self.start = 0


@dataclass
class MediaState:
    show_preview: bool = True
    previews: Dict[str, str] = field(default_factory=dict)
    frames: Dict[str, List[str]] = field(default_factory=dict)
    frame_index: Dict[str, int] = field(default_factory=dict)
    loading: Set[str] = field(default_factory=set)


@dataclass
class AppState:
    feed: FeedState = field(default_factory=FeedState)
    ui: UIState = field(default_factory=UIState)
    detail: DetailState = field(default_factory=DetailState)
    moderation: ModerationState = field(default_factory=ModerationState)
    relationships: RelationshipState = field(default_factory=RelationshipState)
    profile: ProfileState = field(default_factory=ProfileState)
    media: MediaState = field(default_factory=MediaState)
