"""Deferred units of work handed to the host.

A command is a zero-argument callable run off the UI thread. It may only use
the values it was built with and returns a single message (or ``None``) that
the host feeds back into ``Model.update``.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
import logging
from typing import Callable, Iterable, List, Optional
from urllib.parse import urlsplit
import webbrowser

from . import config
from .api_interface import AccountService, PostService, TimelineService
from .media import MediaError, fetch_preview
from .messages import (
    BlockedUsersLoaded,
    BlockResult,
    DeleteResult,
    FollowResult,
    LikeResult,
    MediaPreviewLoaded,
    Message,
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
    ThreadError,
    ThreadLoaded,
    UnblockResult,
)
from .models import PAGE_SIZE, FeedSource, Post

logger = logging.getLogger("fedirant.commands")

Command = Callable[[], Optional[Message]]

BLOCKED_LIST_LIMIT = 80
SEED_POSTS_PER_FOLLOW = 5


def _fetch_source_page(timeline: TimelineService, source: FeedSource, tag: str, before_id: str) -> List[Post]:
    if source == FeedSource.TRENDING:
        return timeline.fetch_trending_page(PAGE_SIZE, before_id)
    if source == FeedSource.FOLLOWING:
        return timeline.fetch_home_page(PAGE_SIZE, before_id)
    if before_id:
        return timeline.fetch_by_tag_page(tag, PAGE_SIZE, before_id)
    return timeline.fetch_by_tag(tag, PAGE_SIZE)


def _seed_from_recent_follows(account: AccountService, recent_follows: List[str]) -> List[Post]:
    seeded: List[Post] = []
    seen = set()
    for account_id in recent_follows:
        try:
            posts = account.posts_by_account(account_id, SEED_POSTS_PER_FOLLOW, "")
        except Exception as e:
            logger.warning("seed posts for %s failed: %s", account_id, e)
            continue
        for p in posts:
            if p.id in seen:
                continue
            seen.add(p.id)
            seeded.append(p)
        if len(seeded) >= PAGE_SIZE:
            break
    seeded.sort(key=lambda p: p.timestamp, reverse=True)
    return seeded[:PAGE_SIZE]


def fetch_posts(
    timeline: TimelineService,
    account: Optional[AccountService],
    source: FeedSource,
    tag: str,
    query_key: str,
    seq: int,
    recent_follows: Iterable[str] = (),
) -> Command:
    """Initial page of a view. An empty home timeline is seeded from recent follows."""
    recent = list(recent_follows)

    def run() -> Message:
        try:
            posts = _fetch_source_page(timeline, source, tag, "")
            if source == FeedSource.FOLLOWING and not posts and recent and account is not None:
                posts = _seed_from_recent_follows(account, recent)
        except Exception as e:
            logger.warning("fetch %s failed: %s", query_key, e)
            return PostsError(error=str(e), query_key=query_key, seq=seq)
        return PostsLoaded(posts=posts, query_key=query_key, seq=seq, raw_count=len(posts))

    return run


def fetch_older(
    timeline: TimelineService,
    source: FeedSource,
    tag: str,
    before_id: str,
    query_key: str,
    seq: int,
) -> Command:
    def run() -> Message:
        try:
            posts = _fetch_source_page(timeline, source, tag, before_id)
        except Exception as e:
            logger.warning("fetch older %s before %s failed: %s", query_key, before_id, e)
            return PageError(error=str(e), query_key=query_key, seq=seq)
        return PageLoaded(posts=posts, query_key=query_key, seq=seq, raw_count=len(posts))

    return run


def fetch_thread(timeline: TimelineService, post_id: str) -> Command:
    def run() -> Message:
        try:
            ancestors, descendants = timeline.fetch_thread(post_id)
        except Exception as e:
            logger.warning("fetch thread %s failed: %s", post_id, e)
            return ThreadError(post_id=post_id, error=str(e))
        return ThreadLoaded(post_id=post_id, ancestors=ancestors, descendants=descendants)

    return run


def fetch_relationships(account: Optional[AccountService], posts: Iterable[Post]) -> Optional[Command]:
    """Look up follow state for the distinct non-own authors of ``posts``."""
    if account is None:
        return None
    ids: List[str] = []
    for p in posts:
        account_id = p.account_id.strip()
        if not account_id or p.is_own or account_id in ids:
            continue
        ids.append(account_id)
    if not ids:
        return None

    def run() -> Message:
        try:
            following = account.lookup_following(ids)
        except Exception as e:
            logger.warning("relationship lookup failed: %s", e)
            return RelationshipsLoaded(following={}, error=str(e))
        return RelationshipsLoaded(following=dict(following))

    return run


def fetch_profile(account: Optional[AccountService], account_id: str) -> Optional[Command]:
    """Profile and recent posts fetched concurrently, joined into one message."""
    account_id = (account_id or "").strip()
    if account is None or not account_id:
        return None

    def run() -> Message:
        with ThreadPoolExecutor(max_workers=2) as pool:
            profile_f = pool.submit(account.profile_by_id, account_id)
            posts_f = pool.submit(account.posts_by_account, account_id, PAGE_SIZE, "")
            try:
                profile = profile_f.result()
                posts = posts_f.result()
            except Exception as e:
                logger.warning("profile %s failed: %s", account_id, e)
                return ProfileLoaded(account_id=account_id, error=str(e))
        return ProfileLoaded(account_id=account_id, profile=profile, posts=posts)

    return run


def fetch_own_profile(account: Optional[AccountService]) -> Optional[Command]:
    if account is None:
        return None

    def run() -> Message:
        try:
            profile = account.current_profile()
        except Exception as e:
            logger.warning("own profile failed: %s", e)
            return ProfileLoaded(error=str(e))
        try:
            posts = account.posts_by_account(profile.id, PAGE_SIZE, "")
        except Exception as e:
            logger.warning("own posts failed: %s", e)
            return ProfileLoaded(account_id=profile.id, error=str(e))
        return ProfileLoaded(account_id=profile.id, profile=profile, posts=posts)

    return run


def fetch_profile_for_edit(account: AccountService) -> Command:
    def run() -> Message:
        try:
            return ProfileForEditLoaded(profile=account.current_profile())
        except Exception as e:
            logger.warning("profile for edit failed: %s", e)
            return ProfileForEditLoaded(error=str(e))

    return run


def save_profile(account: AccountService, display_name: str, bio: str) -> Command:
    def run() -> Message:
        try:
            account.update_profile(display_name, bio)
        except Exception as e:
            logger.warning("profile update failed: %s", e)
            return ProfileSaved(error=str(e))
        return ProfileSaved()

    return run


# --- post mutations ---

def _own(post: Post) -> Post:
    return replace(post, is_own=True)


def create_post(posts: PostService, local_id: str, content: str, hashtag: str) -> Command:
    def run() -> Message:
        try:
            created = posts.post(content, hashtag)
        except Exception as e:
            logger.warning("create failed: %s", e)
            return PostResult(post_id=local_id, error=str(e))
        return PostResult(post_id=local_id, post=_own(created))

    return run


def edit_post(posts: PostService, post_id: str, content: str, hashtag: str) -> Command:
    def run() -> Message:
        try:
            edited = posts.edit(post_id, content, hashtag)
        except Exception as e:
            logger.warning("edit %s failed: %s", post_id, e)
            return PostResult(post_id=post_id, is_edit=True, error=str(e))
        return PostResult(post_id=post_id, post=_own(edited), is_edit=True)

    return run


def reply_post(posts: PostService, local_id: str, parent_id: str, content: str, hashtag: str) -> Command:
    def run() -> Message:
        try:
            created = posts.reply(parent_id, content, hashtag)
        except Exception as e:
            logger.warning("reply to %s failed: %s", parent_id, e)
            return PostResult(post_id=local_id, error=str(e))
        return PostResult(post_id=local_id, post=_own(created))

    return run


def delete_post(posts: PostService, post_id: str) -> Command:
    def run() -> Message:
        try:
            posts.delete(post_id)
        except Exception as e:
            logger.warning("delete %s failed: %s", post_id, e)
            return DeleteResult(post_id=post_id, error=str(e))
        return DeleteResult(post_id=post_id)

    return run


def like_post(posts: PostService, post_id: str, was_liked: bool) -> Command:
    def run() -> Message:
        try:
            if was_liked:
                posts.unlike(post_id)
            else:
                posts.like(post_id)
        except Exception as e:
            logger.warning("like toggle %s failed: %s", post_id, e)
            return LikeResult(post_id=post_id, error=str(e))
        return LikeResult(post_id=post_id)

    return run


# --- relationships and moderation ---

def follow_user(account: AccountService, account_id: str, handle: str, follow: bool) -> Command:
    def run() -> Message:
        try:
            if follow:
                account.follow_user(account_id)
            else:
                account.unfollow_user(account_id)
        except Exception as e:
            logger.warning("follow=%s %s failed: %s", follow, account_id, e)
            return FollowResult(account_id=account_id, handle=handle, follow=follow, error=str(e))
        return FollowResult(account_id=account_id, handle=handle, follow=follow)

    return run


def block_user(account: AccountService, account_id: str, handle: str) -> Command:
    def run() -> Message:
        try:
            account.block_user(account_id)
        except Exception as e:
            logger.warning("block %s failed: %s", account_id, e)
            return BlockResult(account_id=account_id, handle=handle, error=str(e))
        return BlockResult(account_id=account_id, handle=handle)

    return run


def unblock_user(account: AccountService, account_id: str, handle: str) -> Command:
    def run() -> Message:
        try:
            account.unblock_user(account_id)
        except Exception as e:
            logger.warning("unblock %s failed: %s", account_id, e)
            return UnblockResult(account_id=account_id, handle=handle, error=str(e))
        return UnblockResult(account_id=account_id, handle=handle)

    return run


def list_blocked_users(account: AccountService) -> Command:
    def run() -> Message:
        try:
            users = account.list_blocked_users(BLOCKED_LIST_LIMIT)
        except Exception as e:
            logger.warning("list blocked failed: %s", e)
            return BlockedUsersLoaded(error=str(e))
        return BlockedUsersLoaded(users=users)

    return run


# --- media, browser, preferences ---

def load_media_preview(key: str, url: str, fallback_url: str, w: int, h: int, animated: bool) -> Command:
    def run() -> Message:
        try:
            preview, frames = fetch_preview(url, fallback_url, w, h, animated)
        except MediaError as e:
            return MediaPreviewLoaded(key=key, error=str(e))
        except Exception as e:
            logger.exception("preview %s crashed", url)
            return MediaPreviewLoaded(key=key, error=str(e))
        return MediaPreviewLoaded(key=key, preview=preview, frames=frames)

    return run


def is_safe_external_url(raw: str) -> bool:
    try:
        parts = urlsplit(raw)
    except ValueError:
        return False
    return bool(parts.netloc) and parts.scheme.lower() in ("http", "https")


def open_urls(urls: Iterable[str]) -> Optional[Command]:
    clean: List[str] = []
    for u in urls:
        u = (u or "").strip()
        if u and is_safe_external_url(u) and u not in clean:
            clean.append(u)
    if not clean:
        return None

    def run() -> None:
        for u in clean:
            try:
                webbrowser.open(u)
            except webbrowser.Error as e:
                logger.warning("open %s failed: %s", u, e)
        return None

    return run


def save_prefs(path: str, hashtag: str, source: FeedSource) -> Command:
    def run() -> Message:
        try:
            config.save_prefs(path, config.UIPrefs(hashtag=hashtag, feed_source=source))
        except (OSError, config.ConfigError) as e:
            logger.warning("saving preferences failed: %s", e)
            return PrefsSaved(error=str(e))
        return PrefsSaved()

    return run
