"""The transition engine.

``Model.update`` takes one message, mutates ``Model.state`` synchronously and
returns the state together with the commands the host should run. Commands
never touch the state; their results come back as further messages.
"""

from dataclasses import replace
import logging
from typing import Callable, Dict, List, Optional, Tuple

from . import commands
from .api_interface import AccountService, PostService, TimelineService
from .commands import Command
from .keys import DEFAULT_KEYS, KeyMap
from .media import (
    AVATAR_HEIGHT,
    AVATAR_WIDTH,
    PREVIEW_HEIGHT,
    PREVIEW_WIDTH,
    SINGLE_HEIGHT,
    SINGLE_WIDTH,
    advance_frames,
    avatar_key,
    base_key,
    is_avatar_key,
    open_urls,
    preview_targets,
    single_key,
    single_target,
)
from .messages import (
    BlockedUsersLoaded,
    BlockResult,
    CreatePost,
    DeletePost,
    DeleteResult,
    EditPost,
    FollowResult,
    HideAuthorPosts,
    KeyPressed,
    LikePost,
    LikeResult,
    MediaPreviewLoaded,
    MediaTick,
    Message,
    OpenDetailWithoutReplies,
    PageError,
    PageLoaded,
    PostResult,
    PostsError,
    PostsLoaded,
    PrefsSaved,
    ProfileForEditLoaded,
    ProfileLoaded,
    ProfileSaved,
    RelationshipsLoaded,
    ReplyPost,
    ResetFeedState,
    Resized,
    SaveProfile,
    ThreadError,
    ThreadLoaded,
    UnblockResult,
)
from .models import (
    DEFAULT_HASHTAG,
    LOCAL_REPLY_PREFIX,
    PAGE_SIZE,
    PREFETCH_TRIGGER,
    REPLY_PAGE_SIZE,
    FeedItem,
    FeedSource,
    ItemStatus,
    Post,
    Profile,
    normalize_hashtag,
)
from .optimistic import (
    begin_delete,
    begin_edit,
    fan_out_like,
    insert_unmatched,
    local_post,
    mark_failed,
    merge_loaded,
    new_local_id,
    reconcile_post,
    remove_item,
)
from .pagination import (
    capture_top_anchor,
    ensure_feed_cursor_visible,
    maybe_start_prefetch,
    query_key,
    reset_page,
    restore_top_anchor,
    set_cursor_by_id,
)
from .state import AppState, FeedState, HostRequest
from .text import estimate_wrapped_lines, split_content_and_tags, strip_hashtag, summarize
from .threads import belongs_to_thread, organize_thread_replies, reconcile_reply
from .visibility import is_at_visible_end, move_cursor_visible, selected_visible_post

logger = logging.getLogger("fedirant.engine")

END_OF_FEED_NOTICE = "🚀 End of the timeline reached."
END_OF_TRENDING_NOTICE = "🔥 You reached the end of trending. Check back later."
LOADING_OLDER_NOTICE = "⏳ Loading older posts..."
NO_OLDER_NOTICE = "🗂️ No older posts left."
EMPTY_CONTENT_NOTICE = "Nothing to post."


def detail_reply_slots(height: int) -> int:
    return max(max(height - 30, 20) // 5, 4)


profile_post_slots = detail_reply_slots


def detail_reply_gate(post: Optional[Post], has_ancestors: bool, height: int) -> int:
    """Lines the focused post overflows by; Down scrolls these before entering replies."""
    if post is None:
        return 0
    content, tags = split_content_and_tags(post.content)
    if not content.strip() and post.attachments:
        content = "(media post)"
    main_lines = 18 + estimate_wrapped_lines(content, 66)
    if tags:
        main_lines += 3
    if post.attachments:
        main_lines += 4
    if has_ancestors:
        main_lines += 6
    view_height = max(height - 2, 8)
    return max(main_lines - (view_height - 4), 0)


def _window_start(cursor: int, start: int, count: int, slots: int) -> int:
    # cursor 0 is the header card; items are 1-based
    if cursor <= 0:
        return 0
    slots = max(slots, 1)
    idx = cursor - 1
    if idx < start:
        start = idx
    if idx >= start + slots:
        start = idx - slots + 1
    start = min(start, max(count - slots, 0))
    return max(start, 0)


class Model:
    def __init__(
        self,
        timeline: TimelineService,
        account: Optional[AccountService] = None,
        posts: Optional[PostService] = None,
        default_hashtag: str = DEFAULT_HASHTAG,
        hashtag: str = "",
        initial_source: FeedSource = FeedSource.PRIMARY,
        prefs_path: str = "",
        keys: KeyMap = DEFAULT_KEYS,
    ):
        self.timeline = timeline
        self.account = account
        self.posts = posts
        self.prefs_path = prefs_path
        self.keys = keys

        default_hashtag = normalize_hashtag(default_hashtag) or DEFAULT_HASHTAG
        tag = normalize_hashtag(hashtag) or default_hashtag
        source = initial_source
        if source == FeedSource.CUSTOM and tag.lower() == default_hashtag.lower():
            source = FeedSource.PRIMARY
        self.state = AppState(feed=FeedState(default_hashtag=default_hashtag, hashtag=tag, source=source))
        self.state.feed.page.loading = True

        # local reply id -> thread root it was shown under
        self._pending_replies: Dict[str, str] = {}
        # local post id -> query key of the feed it was created in
        self._pending_creates: Dict[str, str] = {}

        self._handlers: Dict[type, Callable[[Message], List[Optional[Command]]]] = {
            PostsLoaded: self._on_posts_loaded,
            PostsError: self._on_posts_error,
            PageLoaded: self._on_page_loaded,
            PageError: self._on_page_error,
            ThreadLoaded: self._on_thread_loaded,
            ThreadError: self._on_thread_error,
            OpenDetailWithoutReplies: self._on_open_detail_without_replies,
            ResetFeedState: self._on_reset_feed_state,
            CreatePost: self._on_create_post,
            EditPost: self._on_edit_post,
            ReplyPost: self._on_reply_post,
            DeletePost: self._on_delete_post,
            LikePost: self._on_like_post,
            PostResult: self._on_post_result,
            DeleteResult: self._on_delete_result,
            LikeResult: self._on_like_result,
            RelationshipsLoaded: self._on_relationships_loaded,
            ProfileLoaded: self._on_profile_loaded,
            ProfileForEditLoaded: self._on_profile_for_edit_loaded,
            SaveProfile: self._on_save_profile,
            ProfileSaved: self._on_profile_saved,
            FollowResult: self._on_follow_result,
            BlockResult: self._on_block_result,
            HideAuthorPosts: self._on_hide_author_posts,
            BlockedUsersLoaded: self._on_blocked_users_loaded,
            UnblockResult: self._on_unblock_result,
            PrefsSaved: self._on_prefs_saved,
            MediaPreviewLoaded: self._on_media_preview_loaded,
            MediaTick: self._on_media_tick,
            KeyPressed: self._on_key,
            Resized: self._on_resized,
        }

    # --- public surface ---

    def init(self) -> List[Command]:
        return [self._fetch_posts_cmd()]

    def update(self, msg: Message) -> Tuple[AppState, List[Command]]:
        handler = self._handlers.get(type(msg))
        if handler is None:
            return self.state, []
        cmds = handler(msg) or []
        return self.state, [c for c in cmds if c is not None]

    def selected_post(self) -> Optional[Post]:
        s = self.state
        if s.detail.show_detail:
            if 0 < s.detail.cursor <= len(s.detail.replies):
                return s.detail.replies[s.detail.cursor - 1]
            if s.detail.focused is not None:
                return s.detail.focused
        if 0 <= s.feed.cursor < len(s.feed.items):
            return s.feed.items[s.feed.cursor].post
        return None

    def is_detail_view(self) -> bool:
        return self.state.detail.show_detail

    def is_dialog_open(self) -> bool:
        s = self.state
        return (
            s.ui.show_all_hints
            or s.moderation.show_blocked
            or s.profile.show_profile
            or s.ui.hashtag_input
            or s.moderation.confirm_block
            or s.detail.confirm_delete
            or s.relationships.confirm_follow
        )

    def take_request(self) -> Optional[HostRequest]:
        req = self.state.ui.request
        self.state.ui.request = None
        return req

    def take_status(self) -> str:
        status = self.state.ui.status
        self.state.ui.status = ""
        return status

    def source_label(self) -> str:
        feed = self.state.feed
        if feed.source == FeedSource.TRENDING:
            return "trending"
        if feed.source == FeedSource.FOLLOWING:
            return "following"
        if feed.source == FeedSource.CUSTOM:
            return "#" + feed.hashtag
        return "#" + feed.default_hashtag

    def tab_order(self) -> List[FeedSource]:
        feed = self.state.feed
        order = [FeedSource.PRIMARY, FeedSource.TRENDING, FeedSource.FOLLOWING]
        if feed.hashtag.strip().lower() != feed.default_hashtag.strip().lower():
            order.append(FeedSource.CUSTOM)
        return order

    def thread_root_id(self) -> str:
        s = self.state
        if s.detail.focused is not None:
            return s.detail.focused.id
        if 0 <= s.feed.cursor < len(s.feed.items):
            return s.feed.items[s.feed.cursor].post.id
        return ""

    # --- command builders ---

    def _active_tag(self) -> str:
        feed = self.state.feed
        return feed.hashtag if feed.source == FeedSource.CUSTOM else feed.default_hashtag

    def _fetch_posts_cmd(self) -> Command:
        feed = self.state.feed
        return commands.fetch_posts(
            self.timeline,
            self.account,
            feed.source,
            self._active_tag(),
            query_key(feed),
            feed.page.seq,
            self.state.relationships.recent_follows,
        )

    def _fetch_older_cmd(self) -> Command:
        feed = self.state.feed
        return commands.fetch_older(
            self.timeline, feed.source, self._active_tag(), feed.page.oldest_id, query_key(feed), feed.page.seq
        )

    def _relationships_cmd(self, posts) -> Optional[Command]:
        return commands.fetch_relationships(self.account, posts)

    def _save_prefs_cmd(self) -> Optional[Command]:
        if not self.prefs_path.strip():
            return None
        feed = self.state.feed
        return commands.save_prefs(self.prefs_path, feed.hashtag or DEFAULT_HASHTAG, feed.source)

    def _load_thread(self, post_id: str) -> Command:
        entry = self.state.detail.thread_cache.get(post_id)
        if entry is None:
            return commands.fetch_thread(self.timeline, post_id)
        ancestors = list(entry.ancestors)
        descendants = list(entry.descendants)
        return lambda: ThreadLoaded(post_id=post_id, ancestors=ancestors, descendants=descendants)

    def _media_subject(self) -> Optional[Post]:
        s = self.state
        if s.detail.show_detail:
            if s.detail.focused is not None:
                return s.detail.focused
            if 0 <= s.feed.cursor < len(s.feed.items):
                return s.feed.items[s.feed.cursor].post
            return None
        return self.selected_post()

    def _media_cmds(self) -> List[Command]:
        media = self.state.media
        if not media.show_preview:
            return []
        post = self._media_subject()
        if post is None:
            return []
        cmds = []
        for target in preview_targets(post.attachments):
            key = base_key(target.url)
            if key in media.previews or key in media.loading:
                continue
            media.loading.add(key)
            cmds.append(commands.load_media_preview(
                key, target.url, target.fallback_url, PREVIEW_WIDTH, PREVIEW_HEIGHT, target.animated
            ))
        if self.state.detail.show_detail:
            target = single_target(post.attachments)
            if target is not None:
                key = single_key(target.url)
                if key not in media.previews and key not in media.loading:
                    media.loading.add(key)
                    cmds.append(commands.load_media_preview(
                        key, target.url, target.fallback_url, SINGLE_WIDTH, SINGLE_HEIGHT, target.animated
                    ))
        return cmds

    def _avatar_cmd(self) -> Optional[Command]:
        media = self.state.media
        url = self.state.profile.profile.avatar_url.strip()
        if not media.show_preview or not url:
            return None
        key = avatar_key(url)
        if key in media.previews or key in media.loading:
            return None
        media.loading.add(key)
        return commands.load_media_preview(key, url, "", AVATAR_WIDTH, AVATAR_HEIGHT, False)

    # --- shared state helpers ---

    def _guard(self, msg) -> bool:
        feed = self.state.feed
        if msg.seq != feed.page.seq or msg.query_key != query_key(feed):
            logger.debug(
                "dropping stale %s (seq %s/%s, key %s/%s)",
                type(msg).__name__, msg.seq, feed.page.seq, msg.query_key, query_key(feed),
            )
            return False
        return True

    def _ensure_detail_cursor_visible(self) -> None:
        d = self.state.detail
        if not d.show_detail:
            d.start = 0
            return
        d.start = _window_start(d.cursor, d.start, len(d.replies), detail_reply_slots(self.state.ui.height))

    def _ensure_profile_cursor_visible(self) -> None:
        p = self.state.profile
        if not p.show_profile:
            p.start = 0
            return
        p.start = _window_start(p.cursor, p.start, len(p.posts), profile_post_slots(self.state.ui.height))

    def _load_more_replies(self) -> None:
        d = self.state.detail
        if not d.has_more_replies:
            return
        d.reply_visible = min(len(d.reply_all), d.reply_visible + REPLY_PAGE_SIZE)
        d.has_more_replies = d.reply_visible < len(d.reply_all)
        self._ensure_detail_cursor_visible()

    def _find_post(self, post_id: str) -> Optional[Post]:
        s = self.state
        for item in s.feed.items:
            if item.post.id == post_id:
                return item.post
        for p in s.detail.replies:
            if p.id == post_id:
                return p
        for p in s.detail.ancestors:
            if p.id == post_id:
                return p
        if s.detail.focused is not None and s.detail.focused.id == post_id:
            return s.detail.focused
        return None

    def _focus_thread(self, focused: Optional[Post], root_id: str) -> List[Optional[Command]]:
        """Show the thread rooted at ``root_id`` with ``focused`` as the main post."""
        d = self.state.detail
        d.focused = focused
        d.clear_thread(loading=True)
        return [self._load_thread(root_id)] + self._media_cmds()

    def _prepare_source_change(self) -> None:
        s = self.state
        s.feed.items = []
        s.feed.cursor = 0
        s.feed.error = None
        s.ui.start_index = 0
        s.ui.scroll_line = 0
        s.ui.h_scroll = 0
        s.profile.return_to_profile = False
        reset_page(s.feed)

    def _switch_source(self, source: FeedSource, notice: str) -> List[Optional[Command]]:
        self.state.feed.source = source
        self._prepare_source_change()
        self.state.feed.notice = notice
        return [self._fetch_posts_cmd(), self._save_prefs_cmd()]

    def _close_profile(self) -> None:
        self.state.profile.close()
        self.state.relationships.cancel_follow()

    def _open_blocked(self) -> List[Optional[Command]]:
        mod = self.state.moderation
        mod.show_blocked = True
        mod.loading_blocked = True
        mod.blocked_error = None
        mod.blocked_users = []
        mod.blocked_cursor = 0
        mod.confirm_unblock = False
        mod.unblock_target = None
        if self.account is None:
            mod.loading_blocked = False
            return []
        return [commands.list_blocked_users(self.account)]

    # --- feed loading ---

    def _on_posts_loaded(self, msg: PostsLoaded):
        if not self._guard(msg):
            return []
        s = self.state
        feed = s.feed
        page = feed.page
        posts = list(msg.posts)
        if feed.source == FeedSource.FOLLOWING:
            posts = [p for p in posts if not p.is_own]
        feed.items = merge_loaded(feed.items, posts)
        page.loading = False
        page.loading_more = False
        feed.error = None
        feed.notice = ""
        page.oldest_id = feed.items[-1].post.id if feed.items else ""
        if feed.source == FeedSource.TRENDING:
            page.has_more = False
            page.oldest_id = ""
        elif feed.source == FeedSource.FOLLOWING:
            raw = msg.raw_count or len(msg.posts)
            page.has_more = raw == PAGE_SIZE
        else:
            page.has_more = len(posts) == PAGE_SIZE
        if feed.cursor >= len(feed.items):
            feed.cursor = 0
        if feed.source == FeedSource.FOLLOWING:
            s.relationships.following_dirty = False
        ensure_feed_cursor_visible(s)
        return self._media_cmds() + [self._relationships_cmd(msg.posts)]

    def _on_posts_error(self, msg: PostsError):
        if not self._guard(msg):
            return []
        feed = self.state.feed
        feed.page.loading = False
        feed.page.loading_more = False
        feed.error = msg.error
        return []

    def _on_page_loaded(self, msg: PageLoaded):
        if not self._guard(msg):
            return []
        s = self.state
        feed = s.feed
        page = feed.page
        anchor_id = capture_top_anchor(s)
        selected_id = feed.items[feed.cursor].post.id if 0 <= feed.cursor < len(feed.items) else ""
        page.loading_more = False
        feed.error = None

        posts = list(msg.posts)
        if feed.source == FeedSource.FOLLOWING:
            posts = [p for p in posts if not p.is_own]
        if not posts and msg.raw_count == 0:
            page.has_more = False
            if feed.items:
                feed.notice = END_OF_FEED_NOTICE
            return []

        existing = {item.post.id for item in feed.items}
        added = 0
        for p in posts:
            if p.id in existing:
                continue
            existing.add(p.id)
            feed.items.append(FeedItem(post=replace(p)))
            added += 1
        page.oldest_id = feed.items[-1].post.id if feed.items else ""

        if feed.source == FeedSource.TRENDING:
            page.has_more = False
            page.oldest_id = ""
        elif feed.source == FeedSource.FOLLOWING:
            raw = msg.raw_count or len(msg.posts)
            page.has_more = raw == PAGE_SIZE
        else:
            page.has_more = len(posts) == PAGE_SIZE and added > 0

        if added == 0 and feed.items and feed.source != FeedSource.FOLLOWING:
            page.has_more = False
            feed.notice = END_OF_FEED_NOTICE
        elif page.has_more:
            feed.notice = ""

        if selected_id:
            set_cursor_by_id(s, selected_id)
        if anchor_id:
            restore_top_anchor(s, anchor_id)
        return [self._relationships_cmd(msg.posts)]

    def _on_page_error(self, msg: PageError):
        if not self._guard(msg):
            return []
        self.state.feed.page.loading_more = False
        self.state.feed.error = msg.error
        return []

    # --- threads ---

    def _on_thread_loaded(self, msg: ThreadLoaded):
        d = self.state.detail
        replies = organize_thread_replies(msg.post_id, list(msg.descendants))
        d.thread_cache.put(msg.post_id, list(msg.ancestors), replies)

        if msg.post_id != self.thread_root_id():
            logger.debug("dropping thread %s, focus moved to %s", msg.post_id, self.thread_root_id())
            return []

        d.reply_all = [replace(p) for p in replies]
        d.reply_visible = min(REPLY_PAGE_SIZE, len(d.reply_all))
        d.has_more_replies = d.reply_visible < len(d.reply_all)
        d.ancestors = [replace(p) for p in msg.ancestors]
        d.loading_replies = False
        self._ensure_detail_cursor_visible()
        return self._media_cmds() + [self._relationships_cmd(list(msg.ancestors) + replies)]

    def _on_thread_error(self, msg: ThreadError):
        if msg.post_id != self.thread_root_id():
            return []
        self.state.detail.loading_replies = False
        self.state.ui.status = "Could not load replies: " + msg.error
        return []

    def _on_open_detail_without_replies(self, msg: OpenDetailWithoutReplies):
        s = self.state
        if msg.post_id:
            set_cursor_by_id(s, msg.post_id)
        if not s.feed.items:
            return []
        d = s.detail
        d.show_detail = True
        d.clear_thread(loading=False)
        d.focused = None
        d.view_stack = []
        s.profile.return_to_profile = False
        return self._media_cmds()

    def _on_reset_feed_state(self, msg: ResetFeedState):
        if not msg.force:
            return []
        s = self.state
        d = s.detail
        d.show_detail = False
        d.confirm_delete = False
        d.clear_thread(loading=False)
        d.focused = None
        d.view_stack = []
        s.moderation.cancel_block()
        s.moderation.close_blocked()
        s.moderation.loading_blocked = False
        s.moderation.blocked_error = None
        s.moderation.blocked_users = []
        s.moderation.blocked_cursor = 0
        self._close_profile()
        return []

    # --- optimistic mutations ---

    def _reject_empty(self, content: str) -> bool:
        if content.strip():
            return False
        self.state.feed.notice = EMPTY_CONTENT_NOTICE
        return True

    def _on_create_post(self, msg: CreatePost):
        if self._reject_empty(msg.content) or self.posts is None:
            return []
        s = self.state
        local_id = new_local_id()
        self._pending_creates[local_id] = query_key(s.feed)
        s.feed.items.insert(0, FeedItem(post=local_post(msg.content, local_id), status=ItemStatus.PENDING_CREATE))
        s.feed.cursor = 0
        s.ui.start_index = 0
        s.ui.scroll_line = 0
        s.ui.status = "Posting..."
        return [commands.create_post(self.posts, local_id, msg.content, s.feed.default_hashtag)]

    def _on_edit_post(self, msg: EditPost):
        if self._reject_empty(msg.content) or self.posts is None:
            return []
        begin_edit(self.state.feed, msg.post_id, msg.content)
        self.state.ui.status = "Updating..."
        return [commands.edit_post(self.posts, msg.post_id, msg.content, self.state.feed.default_hashtag)]

    def _on_reply_post(self, msg: ReplyPost):
        if self._reject_empty(msg.content) or self.posts is None:
            return []
        s = self.state
        d = s.detail
        local_id = new_local_id(LOCAL_REPLY_PREFIX)
        root_id = self.thread_root_id()
        if d.show_detail and root_id and belongs_to_thread(
            msg.parent_id, root_id, d.focused, d.replies, d.ancestors, d.thread_cache
        ):
            reply = local_post(msg.content, local_id, msg.parent_id)
            d.reply_all.append(reply)
            d.reply_visible = len(d.reply_all)
            d.has_more_replies = False
            entry = d.thread_cache.get(root_id)
            if entry is not None:
                entry.descendants.append(replace(reply))
            self._pending_replies[local_id] = root_id
        s.ui.status = "Replying..."
        return [commands.reply_post(self.posts, local_id, msg.parent_id, msg.content, s.feed.default_hashtag)]

    def _on_delete_post(self, msg: DeletePost):
        if self.posts is None or not begin_delete(self.state.feed, msg.post_id):
            return []
        return [commands.delete_post(self.posts, msg.post_id)]

    def _on_like_post(self, msg: LikePost):
        if not msg.post_id or self.posts is None:
            return []
        fan_out_like(self.state, msg.post_id)
        return [commands.like_post(self.posts, msg.post_id, msg.was_liked)]

    def _on_like_result(self, msg: LikeResult):
        if msg.error:
            fan_out_like(self.state, msg.post_id)
            self.state.ui.status = "Error liking: " + msg.error
        return []

    def _drop_local_reply(self, local_id: str, root_id: str) -> None:
        d = self.state.detail
        d.reply_all = [p for p in d.reply_all if p.id != local_id]
        d.reply_visible = min(d.reply_visible, len(d.reply_all))
        entry = d.thread_cache.get(root_id)
        if entry is not None:
            entry.descendants = [p for p in entry.descendants if p.id != local_id]
        if d.cursor > len(d.replies):
            d.cursor = len(d.replies)
        self._ensure_detail_cursor_visible()

    def _reconcile_reply(self, local_id: str, root_id: str, server: Post) -> None:
        d = self.state.detail
        if d.show_detail and self.thread_root_id() == root_id:
            d.reply_all, _ = reconcile_reply(d.reply_all, local_id, server)
            d.reply_visible = len(d.reply_all)
            d.has_more_replies = False
        entry = d.thread_cache.get(root_id)
        if entry is not None:
            entry.descendants, _ = reconcile_reply(entry.descendants, local_id, server)

    def _on_post_result(self, msg: PostResult):
        s = self.state
        root_id = self._pending_replies.pop(msg.post_id, None)
        created_in = self._pending_creates.pop(msg.post_id, None)
        if msg.error:
            s.ui.status = "Error: " + msg.error
            if root_id is not None:
                self._drop_local_reply(msg.post_id, root_id)
            else:
                mark_failed(s.feed, msg.post_id, msg.error, rollback=msg.is_edit)
            return []
        server = msg.post
        if server is None:
            return []

        is_new_reply = root_id is not None or (msg.post_id.startswith(LOCAL_REPLY_PREFIX) and server.is_reply)
        if is_new_reply:
            s.ui.status = "Reply posted."
            if root_id is None:
                d = s.detail
                root_id = self.thread_root_id()
                if not (d.show_detail and root_id and belongs_to_thread(
                    server.in_reply_to_id, root_id, d.focused, d.replies, d.ancestors, d.thread_cache
                )):
                    return []
            self._reconcile_reply(msg.post_id, root_id, server)
            return []

        matched = reconcile_post(s.feed, msg.post_id, server, msg.is_edit)
        d = s.detail
        d.reply_all = [replace(server) if p.id == msg.post_id else p for p in d.reply_all]
        if d.focused is not None and d.focused.id == msg.post_id:
            d.focused = replace(server)
        if msg.is_edit:
            s.ui.status = "Post updated."
            return []
        s.ui.status = "Post published!"
        if not matched:
            current = query_key(s.feed)
            if created_in == current and current.startswith("tag:"):
                insert_unmatched(s.feed, server)
                ensure_feed_cursor_visible(s)
            return []
        return self._on_open_detail_without_replies(OpenDetailWithoutReplies(post_id=server.id))

    def _on_delete_result(self, msg: DeleteResult):
        s = self.state
        if msg.error:
            mark_failed(s.feed, msg.post_id, msg.error)
            s.ui.status = "Error deleting: " + msg.error
            return []
        remove_item(s.feed, msg.post_id)
        s.ui.status = "Post deleted."
        ensure_feed_cursor_visible(s)
        return []

    # --- relationships, profiles, moderation ---

    def _on_relationships_loaded(self, msg: RelationshipsLoaded):
        if msg.error:
            return []
        self.state.relationships.following_by_id.update(msg.following)
        ensure_feed_cursor_visible(self.state)
        return []

    def _on_profile_loaded(self, msg: ProfileLoaded):
        s = self.state
        p = s.profile
        if not p.show_profile:
            return []
        expected = p.profile.id
        if expected and msg.account_id and expected != msg.account_id:
            logger.debug("dropping profile %s, showing %s", msg.account_id, expected)
            return []
        p.loading = False
        p.error = msg.error
        if msg.error:
            return []
        p.profile = msg.profile or Profile(id=msg.account_id)
        p.posts = list(msg.posts)
        p.cursor = 0
        p.start = 0
        s.detail.scroll_line = 0
        self._ensure_profile_cursor_visible()
        return [self._relationships_cmd(p.posts), self._avatar_cmd()]

    def _on_profile_for_edit_loaded(self, msg: ProfileForEditLoaded):
        if msg.error or msg.profile is None:
            self.state.ui.status = "Profile error: " + (msg.error or "no profile")
            return []
        prof = msg.profile
        self.state.ui.request = HostRequest(kind="profile", target_id=prof.id, text=prof.display_name, extra=prof.bio)
        self.state.ui.status = "Editing profile..."
        return []

    def _on_save_profile(self, msg: SaveProfile):
        if self.account is None:
            return []
        self.state.ui.status = "Saving profile..."
        return [commands.save_profile(self.account, msg.display_name.strip(), msg.bio.strip())]

    def _on_profile_saved(self, msg: ProfileSaved):
        if msg.error:
            self.state.ui.status = "Profile update failed: " + msg.error
        else:
            self.state.ui.status = "Profile updated."
        return []

    def _on_follow_result(self, msg: FollowResult):
        s = self.state
        rel = s.relationships
        rel.cancel_follow()
        if msg.error:
            verb = "following" if msg.follow else "unfollowing"
            s.ui.status = f"Error {verb} @{msg.handle}: {msg.error}"
            return []
        account_id = msg.account_id.strip()
        if account_id:
            rel.following_by_id[account_id] = msg.follow
            if msg.follow:
                rel.add_recent_follow(account_id)
            else:
                rel.remove_recent_follow(account_id)
            prof = s.profile
            if prof.show_profile and prof.profile.id == account_id:
                if msg.follow:
                    prof.profile.followers += 1
                elif prof.profile.followers > 0:
                    prof.profile.followers -= 1
        rel.following_dirty = True
        s.ui.status = ("Followed @" if msg.follow else "Unfollowed @") + msg.handle
        if not msg.follow:
            ensure_feed_cursor_visible(s)
        if s.feed.source == FeedSource.FOLLOWING:
            s.feed.items = []
            s.feed.cursor = 0
            s.ui.start_index = 0
            s.ui.scroll_line = 0
            s.feed.notice = ""
            reset_page(s.feed)
            return [self._fetch_posts_cmd()]
        return []

    def _on_block_result(self, msg: BlockResult):
        s = self.state
        s.moderation.cancel_block()
        if msg.error:
            s.ui.status = f"Error blocking @{msg.handle}: {msg.error}"
            return []
        if msg.account_id:
            s.moderation.hidden_authors.add(msg.account_id)
            ensure_feed_cursor_visible(s)
        s.ui.status = f"Blocked @{msg.handle}. Their posts are hidden."
        return []

    def _on_hide_author_posts(self, msg: HideAuthorPosts):
        if not msg.account_id:
            return []
        self.state.moderation.hidden_authors.add(msg.account_id)
        ensure_feed_cursor_visible(self.state)
        return []

    def _on_blocked_users_loaded(self, msg: BlockedUsersLoaded):
        mod = self.state.moderation
        mod.loading_blocked = False
        mod.blocked_error = msg.error
        mod.blocked_users = list(msg.users)
        if mod.blocked_cursor >= len(mod.blocked_users):
            mod.blocked_cursor = 0
        return []

    def _on_unblock_result(self, msg: UnblockResult):
        s = self.state
        mod = s.moderation
        mod.confirm_unblock = False
        mod.unblock_target = None
        if msg.error:
            mod.blocked_error = msg.error
            return []
        mod.blocked_error = None
        mod.blocked_users = [u for u in mod.blocked_users if u.account_id != msg.account_id]
        mod.hidden_authors.discard(msg.account_id)
        if mod.blocked_cursor >= len(mod.blocked_users) and mod.blocked_cursor > 0:
            mod.blocked_cursor -= 1
        s.feed.notice = "Unblocked @" + msg.handle
        return []

    def _on_prefs_saved(self, msg: PrefsSaved):
        if msg.error:
            self.state.ui.status = "Could not save view settings: " + msg.error
        return []

    # --- media and host events ---

    def _on_media_preview_loaded(self, msg: MediaPreviewLoaded):
        media = self.state.media
        media.loading.discard(msg.key)
        if msg.error:
            logger.debug("preview %s failed: %s", msg.key, msg.error)
            if not is_avatar_key(msg.key):
                media.previews[msg.key] = ""
            media.frames.pop(msg.key, None)
            media.frame_index.pop(msg.key, None)
            return []
        media.previews[msg.key] = msg.preview
        if len(msg.frames) > 1:
            media.frames[msg.key] = list(msg.frames)
            media.frame_index[msg.key] = 0
        else:
            media.frames.pop(msg.key, None)
            media.frame_index.pop(msg.key, None)
        return []

    def _on_media_tick(self, msg: MediaTick):
        advance_frames(self.state.media)
        return []

    def _on_resized(self, msg: Resized):
        self.state.ui.width = max(msg.width, 1)
        self.state.ui.height = max(msg.height, 1)
        ensure_feed_cursor_visible(self.state)
        self._ensure_detail_cursor_visible()
        self._ensure_profile_cursor_visible()
        return []

    # --- keys ---

    def _on_key(self, msg: KeyPressed):
        key = msg.key
        s = self.state
        if s.ui.show_all_hints:
            if self.keys.hints.matches(key) or key in ("escape", "q", "enter"):
                s.ui.show_all_hints = False
            return []
        if s.profile.show_profile:
            return self._profile_key(key)
        if s.moderation.show_blocked:
            return self._blocked_key(key)
        if s.relationships.confirm_follow and key not in ("y", "n", "q", "escape"):
            s.relationships.cancel_follow()
        if s.ui.hashtag_input:
            return self._hashtag_key(key)
        return self._main_key(key)

    def _profile_key(self, key: str):
        s = self.state
        k = self.keys
        prof = s.profile
        rel = s.relationships
        if rel.confirm_follow and key not in ("y", "n"):
            rel.cancel_follow()

        if k.hints.matches(key):
            s.ui.show_all_hints = True
        elif k.home.matches(key):
            prof.cursor = 0
            prof.start = 0
        elif k.set_hashtag.matches(key):
            self._close_profile()
            s.moderation.close_blocked()
            s.feed.cursor = 0
            s.ui.start_index = 0
            s.ui.scroll_line = 0
        elif k.back.matches(key):
            self._close_profile()
        elif k.up.matches(key):
            if prof.cursor > 0:
                prof.cursor -= 1
            self._ensure_profile_cursor_visible()
        elif k.down.matches(key):
            if prof.cursor < len(prof.posts):
                prof.cursor += 1
            self._ensure_profile_cursor_visible()
        elif k.like.matches(key):
            if 0 < prof.cursor <= len(prof.posts):
                selected = prof.posts[prof.cursor - 1]
                return self._on_like_post(LikePost(post_id=selected.id, was_liked=selected.liked_by_user))
        elif k.follow.matches(key):
            target = prof.profile
            if not target.id.strip() or prof.is_own or self.account is None:
                return []
            if rel.following_by_id.get(target.id, False):
                rel.confirm_follow = True
                rel.follow_account_id = target.id
                rel.follow_handle = target.handle
                rel.follow_target = False
                return []
            rel.cancel_follow()
            s.ui.status = "Following @" + target.handle + "..."
            return [commands.follow_user(self.account, target.id, target.handle, True)]
        elif k.blocked_list.matches(key):
            return self._open_blocked()
        elif k.open_detail.matches(key):
            if 0 < prof.cursor <= len(prof.posts):
                target = prof.posts[prof.cursor - 1]
                prof.show_profile = False
                prof.is_own = False
                prof.return_to_profile = True
                set_cursor_by_id(s, target.id)
                s.detail.show_detail = True
                s.detail.view_stack = []
                return self._focus_thread(replace(target), target.id)
        elif k.confirm.matches(key):
            if rel.confirm_follow and rel.follow_account_id and self.account is not None:
                return [commands.follow_user(
                    self.account, rel.follow_account_id, rel.follow_handle, rel.follow_target
                )]
        elif k.cancel.matches(key):
            rel.cancel_follow()
        return []

    def _blocked_key(self, key: str):
        k = self.keys
        mod = self.state.moderation
        if k.back.matches(key):
            mod.close_blocked()
        elif k.up.matches(key):
            if mod.blocked_cursor > 0:
                mod.blocked_cursor -= 1
        elif k.down.matches(key):
            if mod.blocked_cursor < len(mod.blocked_users) - 1:
                mod.blocked_cursor += 1
        elif key == "u":
            if 0 <= mod.blocked_cursor < len(mod.blocked_users):
                mod.confirm_unblock = True
                mod.unblock_target = mod.blocked_users[mod.blocked_cursor]
        elif k.confirm.matches(key):
            target = mod.unblock_target
            if mod.confirm_unblock and target is not None and target.account_id and self.account is not None:
                mod.confirm_unblock = False
                mod.unblock_target = None
                return [commands.unblock_user(self.account, target.account_id, target.handle)]
        elif k.cancel.matches(key):
            mod.confirm_unblock = False
            mod.unblock_target = None
        return []

    def _hashtag_key(self, key: str):
        s = self.state
        ui = s.ui
        if key == "escape":
            ui.hashtag_input = False
            ui.hashtag_buffer = ""
        elif key == "enter":
            tag = normalize_hashtag(ui.hashtag_buffer)
            ui.hashtag_input = False
            ui.hashtag_buffer = ""
            if not tag:
                return []
            s.feed.hashtag = tag
            if tag.lower() == s.feed.default_hashtag.lower():
                source = FeedSource.PRIMARY
            else:
                source = FeedSource.CUSTOM
            return self._switch_source(source, "Switched to #" + tag)
        elif key == "backspace":
            ui.hashtag_buffer = ui.hashtag_buffer[:-1]
        elif len(key) == 1 and key.isprintable():
            ui.hashtag_buffer += key
        return []

    def _cancel_confirmations(self) -> bool:
        s = self.state
        cancelled = s.detail.confirm_delete or s.moderation.confirm_block or s.relationships.confirm_follow
        s.detail.confirm_delete = False
        s.moderation.cancel_block()
        s.relationships.cancel_follow()
        return cancelled

    def _main_key(self, key: str):
        s = self.state
        k = self.keys
        feed = s.feed
        d = s.detail
        ui = s.ui

        if k.scroll_left.matches(key):
            ui.h_scroll = max(ui.h_scroll - 4, 0)
            return []
        if k.scroll_right.matches(key):
            ui.h_scroll += 4
            return []
        if k.hints.matches(key):
            ui.show_all_hints = True
            return []
        if k.toggle_preview.matches(key):
            s.media.show_preview = not s.media.show_preview
            ensure_feed_cursor_visible(s)
            return self._media_cmds() if s.media.show_preview else []
        if k.open_media.matches(key):
            post = self._media_subject()
            urls = open_urls(post.attachments) if post is not None else []
            if urls:
                return [commands.open_urls(urls)]
            feed.notice = "No media on selected post."
            return []
        if k.next_tab.matches(key) or k.prev_tab.matches(key):
            if d.show_detail:
                feed.notice = "Exit detail view to switch tabs."
                return []
            step = 1 if k.next_tab.matches(key) else -1
            order = self.tab_order()
            cur = order.index(feed.source) if feed.source in order else 0
            feed.source = order[(cur + step) % len(order)]
            return self._switch_source(feed.source, "Feed: " + self.source_label())
        if k.set_hashtag.matches(key):
            if d.show_detail:
                d.show_detail = False
                d.focused = None
                d.view_stack = []
                d.cursor = 0
                d.start = 0
                d.scroll_line = 0
                feed.cursor = 0
                return []
            ui.hashtag_input = True
            ui.hashtag_buffer = feed.hashtag
            return []
        if k.blocked_list.matches(key):
            return self._open_blocked()
        if k.show_hidden.matches(key):
            s.moderation.show_hidden = not s.moderation.show_hidden
            feed.notice = "Showing hidden posts" if s.moderation.show_hidden else "Hidden posts concealed"
            ensure_feed_cursor_visible(s)
            return []
        if k.hide_post.matches(key):
            if d.show_detail:
                return []
            sel = selected_visible_post(s)
            if sel is None:
                return []
            s.moderation.hidden_ids.add(sel.id)
            feed.notice = "Post hidden (X to toggle hidden)"
            ensure_feed_cursor_visible(s)
            return []
        if k.refresh.matches(key):
            if d.show_detail:
                root_id = self.thread_root_id()
                if not root_id:
                    return []
                d.thread_cache.drop(root_id)
                d.clear_thread(loading=True)
                return [commands.fetch_thread(self.timeline, root_id)]
            feed.notice = ""
            reset_page(feed)
            return [self._fetch_posts_cmd()]
        if k.up.matches(key):
            if d.show_detail:
                if d.cursor > 0:
                    d.cursor -= 1
                if d.scroll_line > 0:
                    d.scroll_line -= 1
                self._ensure_detail_cursor_visible()
                return self._media_cmds()
            d.confirm_delete = False
            move_cursor_visible(s, -1)
            ensure_feed_cursor_visible(s)
            return self._media_cmds()
        if k.down.matches(key):
            if d.show_detail:
                gate = detail_reply_gate(self._media_subject(), bool(d.ancestors), ui.height)
                if d.cursor == 0 and d.scroll_line < gate:
                    d.scroll_line += 1
                    return self._media_cmds()
                if d.cursor < len(d.replies):
                    d.cursor += 1
                if d.has_more_replies and d.cursor >= len(d.replies) - PREFETCH_TRIGGER:
                    self._load_more_replies()
                d.scroll_line += 1
                self._ensure_detail_cursor_visible()
                return self._media_cmds()
            d.confirm_delete = False
            move_cursor_visible(s, 1)
            ensure_feed_cursor_visible(s)
            if maybe_start_prefetch(s):
                return [self._fetch_older_cmd()] + self._media_cmds()
            if feed.source == FeedSource.TRENDING and not feed.page.has_more and is_at_visible_end(s):
                feed.notice = END_OF_TRENDING_NOTICE
            return self._media_cmds()
        if k.home.matches(key):
            if d.show_detail:
                d.scroll_line = 0
                d.cursor = 0
                d.start = 0
                return self._media_cmds()
            self._cancel_confirmations()
            self._close_profile()
            s.moderation.close_blocked()
            feed.cursor = 0
            ui.start_index = 0
            ui.scroll_line = 0
            ui.h_scroll = 0
            d.cursor = 0
            d.start = 0
            d.scroll_line = 0
            ensure_feed_cursor_visible(s)
            return []
        if k.open_detail.matches(key):
            if not feed.items:
                return []
            if not d.show_detail:
                d.show_detail = True
                s.profile.return_to_profile = False
                d.view_stack = []
                return self._focus_thread(None, feed.items[feed.cursor].post.id)
            if 0 < d.cursor <= len(d.replies):
                selected = d.replies[d.cursor - 1]
                d.view_stack.append(d.focused)
                return self._focus_thread(selected, selected.id)
            return []
        if k.load_more.matches(key):
            if self._cancel_confirmations():
                return []
            if d.show_detail:
                self._load_more_replies()
                return []
            if not feed.items:
                return []
            page = feed.page
            if page.loading or page.loading_more:
                feed.notice = LOADING_OLDER_NOTICE
                return []
            if not page.has_more or not page.oldest_id:
                feed.notice = NO_OLDER_NOTICE
                return []
            page.loading_more = True
            page.seq += 1
            return [self._fetch_older_cmd()]
        if k.open_url.matches(key):
            post = self.selected_post()
            if post is not None and post.url:
                return [commands.open_urls([post.url])]
            return []
        if k.edit.matches(key):
            if 0 <= feed.cursor < len(feed.items) and feed.items[feed.cursor].post.is_own:
                post = feed.items[feed.cursor].post
                ui.request = HostRequest(
                    kind="edit", target_id=post.id, text=strip_hashtag(post.content, feed.default_hashtag)
                )
            return []
        if k.like.matches(key):
            post = self.selected_post()
            if post is None:
                return []
            return self._on_like_post(LikePost(post_id=post.id, was_liked=post.liked_by_user))
        if k.reply.matches(key):
            post = self.selected_post()
            if post is not None:
                ui.request = HostRequest(
                    kind="reply", target_id=post.id, extra=f"@{post.handle}: {summarize(post.content)}"
                )
            return []
        if k.block.matches(key):
            post = self.selected_post()
            if post is None or not post.account_id or post.is_own:
                feed.notice = "Cannot block this user."
                return []
            s.moderation.confirm_block = True
            s.moderation.block_account_id = post.account_id
            s.moderation.block_handle = post.handle
            return []
        if k.follow.matches(key):
            post = self.selected_post()
            if post is None or not post.account_id or post.is_own:
                feed.notice = "Cannot follow this user."
                return []
            rel = s.relationships
            rel.confirm_follow = True
            rel.follow_account_id = post.account_id
            rel.follow_handle = post.handle
            rel.follow_target = not rel.is_following(post.account_id)
            s.moderation.cancel_block()
            return []
        if k.profile.matches(key):
            post = self.selected_post()
            if post is None or not post.account_id.strip() or self.account is None:
                return []
            s.profile.open(is_own=post.is_own)
            s.profile.profile = Profile(id=post.account_id.strip())
            return [commands.fetch_profile(self.account, post.account_id)]
        if k.own_profile.matches(key):
            if self.account is None:
                return []
            s.profile.open(is_own=True)
            return [commands.fetch_own_profile(self.account)]
        if k.edit_profile.matches(key):
            if self.account is None:
                return []
            return [commands.fetch_profile_for_edit(self.account)]
        if k.delete.matches(key):
            if 0 <= feed.cursor < len(feed.items) and feed.items[feed.cursor].post.is_own:
                d.confirm_delete = True
            return []
        if k.back.matches(key):
            return self._back(key)
        if k.confirm.matches(key):
            return self._confirm()
        if k.cancel.matches(key) and self._cancel_confirmations():
            return []
        if k.new_post.matches(key):
            ui.request = HostRequest(kind="post")
            return []
        if k.parent.matches(key):
            return self._jump_to_parent()
        return []

    def _back(self, key: str):
        s = self.state
        d = s.detail
        if s.moderation.confirm_block:
            s.moderation.cancel_block()
            return []
        if s.relationships.confirm_follow:
            s.relationships.cancel_follow()
            return []
        if d.show_detail:
            if d.view_stack:
                d.focused = d.view_stack.pop()
                root_id = self.thread_root_id()
                if not root_id:
                    return []
                return self._focus_thread(d.focused, root_id)
            d.show_detail = False
            d.focused = None
            d.view_stack = []
            d.start = 0
            d.scroll_line = 0
            if s.profile.return_to_profile:
                s.profile.show_profile = True
                s.profile.return_to_profile = False
            ensure_feed_cursor_visible(s)
            return self._media_cmds()
        if d.confirm_delete:
            d.confirm_delete = False
        return []

    def _confirm(self):
        s = self.state
        feed = s.feed
        if s.detail.confirm_delete:
            s.detail.confirm_delete = False
            if 0 <= feed.cursor < len(feed.items):
                return self._on_delete_post(DeletePost(post_id=feed.items[feed.cursor].post.id))
            return []
        mod = s.moderation
        if mod.confirm_block and mod.block_account_id and self.account is not None:
            account_id, handle = mod.block_account_id, mod.block_handle
            mod.cancel_block()
            s.ui.status = "Blocking @" + handle + "..."
            return [commands.block_user(self.account, account_id, handle)]
        rel = s.relationships
        if rel.confirm_follow and rel.follow_account_id and self.account is not None:
            return [commands.follow_user(self.account, rel.follow_account_id, rel.follow_handle, rel.follow_target)]
        return []

    def _jump_to_parent(self):
        s = self.state
        d = s.detail
        if not d.show_detail:
            return []
        current = self.selected_post()
        if current is None:
            return []
        parent_id = current.in_reply_to_id if current.is_reply else ""
        if not parent_id:
            if not d.ancestors:
                return []
            parent_id = d.ancestors[-1].id
        parent = self._find_post(parent_id)
        if parent is None:
            return []
        d.view_stack.append(current)
        return self._focus_thread(replace(parent), parent_id)
