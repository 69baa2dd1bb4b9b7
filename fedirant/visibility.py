"""Which loaded feed items can currently be shown, and cursor moves over them."""

from typing import List, Optional

from .models import FeedSource, Post
from .state import AppState, ModerationState


def is_marked_hidden(post: Post, moderation: ModerationState) -> bool:
    if post.id in moderation.hidden_ids:
        return True
    return bool(post.account_id) and post.account_id in moderation.hidden_authors


def is_hidden(post: Post, moderation: ModerationState) -> bool:
    if moderation.show_hidden:
        return False
    return is_marked_hidden(post, moderation)


def is_visible(post: Post, state: AppState) -> bool:
    if is_hidden(post, state.moderation):
        return False
    if state.feed.source != FeedSource.FOLLOWING:
        return True
    if post.is_own:
        return False
    account_id = post.account_id.strip()
    if not account_id:
        return True
    # Unknown relationships stay visible until the lookup arrives.
    return state.relationships.following_by_id.get(account_id, True)


def visible_indices(state: AppState) -> List[int]:
    return [i for i, item in enumerate(state.feed.items) if is_visible(item.post, state)]


def ensure_visible_cursor(state: AppState) -> None:
    feed = state.feed
    if not feed.items:
        feed.cursor = 0
        return
    feed.cursor = min(max(feed.cursor, 0), len(feed.items) - 1)
    if is_visible(feed.items[feed.cursor].post, state):
        return
    for i in range(feed.cursor + 1, len(feed.items)):
        if is_visible(feed.items[i].post, state):
            feed.cursor = i
            return
    for i in range(feed.cursor - 1, -1, -1):
        if is_visible(feed.items[i].post, state):
            feed.cursor = i
            return


def move_cursor_visible(state: AppState, delta: int) -> None:
    """Step to the next visible item in the direction of ``delta``; stop at the edges."""
    feed = state.feed
    if not feed.items or delta == 0:
        return
    step = 1 if delta > 0 else -1
    for _ in range(len(feed.items)):
        nxt = feed.cursor + step
        if nxt < 0 or nxt >= len(feed.items):
            return
        feed.cursor = nxt
        if is_visible(feed.items[nxt].post, state):
            return


def selected_visible_post(state: AppState) -> Optional[Post]:
    feed = state.feed
    if not 0 <= feed.cursor < len(feed.items):
        return None
    post = feed.items[feed.cursor].post
    return post if is_visible(post, state) else None


def is_at_visible_end(state: AppState) -> bool:
    visible = visible_indices(state)
    return bool(visible) and visible[-1] == state.feed.cursor
