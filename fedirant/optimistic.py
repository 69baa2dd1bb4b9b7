"""Optimistic feed edits and their reconciliation with server results."""

import itertools
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from .models import LOCAL_ID_PREFIX, LOCAL_REPLY_PREFIX, FeedItem, ItemStatus, Post
from .state import AppState, FeedState

_local_counter = itertools.count(1)


def new_local_id(prefix: str = LOCAL_ID_PREFIX) -> str:
    return f"{prefix}{time.time_ns()}-{next(_local_counter)}"


def local_post(content: str, local_id: str, parent_id: str = "") -> Post:
    return Post(
        id=local_id,
        author="You",
        handle="you",
        content=content,
        timestamp=datetime.now(timezone.utc),
        in_reply_to_id=parent_id,
        is_own=True,
    )


def is_local_id(post_id: str) -> bool:
    return post_id.startswith(LOCAL_ID_PREFIX) or post_id.startswith(LOCAL_REPLY_PREFIX)


def contents_overlap(a: str, b: str) -> bool:
    """Either text contains the other.

    Servers may append a hashtag to what was typed, so this is how a pending
    create is recognised in a fetched page. Two pending posts with
    overlapping text can be confused; that ambiguity is accepted.
    """
    if not a or not b:
        return False
    return a in b or b in a


def sort_items(items: List[FeedItem]) -> None:
    """Newest first; equal timestamps fall back to the larger id first."""
    items.sort(key=lambda it: (it.post.timestamp, it.post.id), reverse=True)


def merge_loaded(existing: Iterable[FeedItem], fetched: List[Post]) -> List[FeedItem]:
    """Combine a freshly fetched page with still-pending local items.

    Pending updates and deletes are matched by id; a matched update keeps its
    local content and becomes normal, a matched delete is replaced by the
    fetched copy.
    Pending creates are dropped once the page holds a post with overlapping
    content. Unmatched pending items are kept.
    """
    fresh = [FeedItem(post=replace(p)) for p in fetched]
    kept: List[FeedItem] = []
    for item in existing:
        if not item.status.is_pending:
            continue
        found = False
        if item.status in (ItemStatus.PENDING_UPDATE, ItemStatus.PENDING_DELETE):
            for i, new in enumerate(fresh):
                if new.post.id != item.post.id:
                    continue
                found = True
                if item.status == ItemStatus.PENDING_UPDATE:
                    fresh[i] = replace(item, status=ItemStatus.NORMAL)
                break
        else:
            found = any(contents_overlap(new.post.content, item.post.content) for new in fresh)
        if not found:
            kept.append(item)
    merged = kept + fresh
    sort_items(merged)
    return merged


def toggle_like(post: Post) -> Post:
    if post.liked_by_user:
        return replace(post, liked_by_user=False, likes=max(post.likes - 1, 0))
    return replace(post, liked_by_user=True, likes=post.likes + 1)


def _toggle_in(posts: List[Post], post_id: str) -> List[Post]:
    return [toggle_like(p) if p.id == post_id else p for p in posts]


def fan_out_like(state: AppState, post_id: str) -> None:
    """Toggle the like on every stored copy of ``post_id``.

    Copies live in the feed, the thread replies and ancestors, every cached
    thread, the profile post list and the focused post. Applying it twice
    restores every copy.
    """
    feed = state.feed
    for i, item in enumerate(feed.items):
        if item.post.id == post_id:
            feed.items[i] = replace(item, post=toggle_like(item.post))
    detail = state.detail
    detail.reply_all = _toggle_in(detail.reply_all, post_id)
    detail.ancestors = _toggle_in(detail.ancestors, post_id)
    if detail.focused is not None and detail.focused.id == post_id:
        detail.focused = toggle_like(detail.focused)
    for entry in detail.thread_cache.entries():
        entry.ancestors = _toggle_in(entry.ancestors, post_id)
        entry.descendants = _toggle_in(entry.descendants, post_id)
    state.profile.posts = _toggle_in(state.profile.posts, post_id)


def find_item(feed: FeedState, post_id: str) -> Optional[int]:
    for i, item in enumerate(feed.items):
        if item.post.id == post_id:
            return i
    return None


def begin_edit(feed: FeedState, post_id: str, content: str) -> bool:
    i = find_item(feed, post_id)
    if i is None:
        return False
    item = feed.items[i]
    feed.items[i] = FeedItem(
        post=replace(item.post, content=content),
        status=ItemStatus.PENDING_UPDATE,
        old_content=item.post.content,
    )
    return True


def begin_delete(feed: FeedState, post_id: str) -> bool:
    i = find_item(feed, post_id)
    if i is None:
        return False
    feed.items[i] = replace(feed.items[i], status=ItemStatus.PENDING_DELETE, error=None)
    return True


def mark_failed(feed: FeedState, post_id: str, error: str, rollback: bool = False) -> bool:
    i = find_item(feed, post_id)
    if i is None:
        return False
    item = feed.items[i]
    post = replace(item.post, content=item.old_content) if rollback else item.post
    feed.items[i] = replace(item, post=post, status=ItemStatus.FAILED, error=error)
    return True


def reconcile_post(feed: FeedState, post_id: str, server: Post, is_edit: bool) -> bool:
    """Replace the optimistic item with the server's copy.

    Matches the carried id first; creates may also match on overlapping
    content. If a refresh already loaded the server copy, the optimistic
    item is dropped so the post id stays unique.
    """
    match = find_item(feed, post_id) if post_id else None
    if match is None and not is_edit:
        for i, item in enumerate(feed.items):
            if item.status == ItemStatus.PENDING_CREATE and contents_overlap(server.content, item.post.content):
                match = i
                break
    if match is None:
        return False
    loaded = find_item(feed, server.id)
    if loaded is not None and loaded != match:
        del feed.items[match]
        if feed.cursor > match or feed.cursor >= len(feed.items):
            feed.cursor = max(feed.cursor - 1, 0)
        return True
    feed.items[match] = FeedItem(post=replace(server), status=ItemStatus.NORMAL)
    return True


def insert_unmatched(feed: FeedState, server: Post) -> bool:
    """Add a published post no pending item accounted for, unless already loaded."""
    if not server.id or find_item(feed, server.id) is not None:
        return False
    feed.items.append(FeedItem(post=replace(server)))
    sort_items(feed.items)
    return True


def remove_item(feed: FeedState, post_id: str) -> bool:
    i = find_item(feed, post_id)
    if i is None:
        return False
    del feed.items[i]
    if feed.cursor >= len(feed.items) and feed.cursor > 0:
        feed.cursor -= 1
    return True
