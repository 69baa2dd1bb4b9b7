"""Feed paging, viewport spans and identity-based scroll anchoring."""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from .models import PREFETCH_TRIGGER, FeedSource
from .state import AppState, FeedState
from .text import card_layout
from .visibility import ensure_visible_cursor, visible_indices

# Title, tabs, spacing, loader/notice rows and the hint line around the feed.
FEED_CHROME_LINES = 8
PREVIEW_PANEL_WIDTH = 58


def query_key(feed: FeedState) -> str:
    if feed.source == FeedSource.TRENDING:
        return "trending"
    if feed.source == FeedSource.FOLLOWING:
        return "following"
    if feed.source == FeedSource.CUSTOM:
        return "tag:" + feed.hashtag.strip().lower()
    return "tag:" + feed.default_hashtag.strip().lower()


def reset_page(feed: FeedState) -> int:
    """Start a fresh initial load of the current view; returns its new sequence."""
    page = feed.page
    page.oldest_id = ""
    page.has_more = True
    page.loading = True
    page.loading_more = False
    page.seq += 1
    return page.seq


@dataclass
class Span:
    idx: int  # index into feed.items
    top: int
    bottom: int


def card_widths(state: AppState) -> Tuple[int, int]:
    available = state.ui.width - 4
    if state.media.show_preview:
        available -= PREVIEW_PANEL_WIDTH
    card = max(available, 44)
    return card, max(card - 10, 20)


def viewport_height(state: AppState) -> int:
    return max(state.ui.height - FEED_CHROME_LINES, 4)


def visible_spans(state: AppState, visible: Optional[List[int]] = None) -> List[Span]:
    if visible is None:
        visible = visible_indices(state)
    _, body_width = card_widths(state)
    spans = []
    line = 0
    for idx in visible:
        height = card_layout(state.feed.items[idx].post, body_width).height
        spans.append(Span(idx=idx, top=line, bottom=line + height - 1))
        line += height + 1  # spacer between cards
    return spans


def start_pos_from_scroll_line(spans: List[Span], scroll_line: int) -> int:
    if not spans or scroll_line <= 0:
        return 0
    for pos, span in enumerate(spans):
        if span.bottom >= scroll_line:
            return pos
    return len(spans) - 1


def slots_from(spans: List[Span], start: int, view_height: int) -> int:
    """How many cards starting at ``start`` fit entirely inside the viewport."""
    if not 0 <= start < len(spans):
        return 0
    window_bottom = spans[start].top + max(view_height, 1) - 1
    slots = 0
    for span in spans[start:]:
        if span.bottom > window_bottom:
            break
        slots += 1
    return slots


def ensure_feed_cursor_visible(state: AppState) -> None:
    if state.detail.show_detail:
        return
    ui = state.ui
    visible = visible_indices(state)
    if not visible:
        ui.scroll_line = 0
        return
    ensure_visible_cursor(state)
    spans = visible_spans(state, visible)
    view_height = viewport_height(state)
    max_scroll = max(spans[-1].bottom + 1 - view_height, 0)
    selected = next((pos for pos, s in enumerate(spans) if s.idx == state.feed.cursor), -1)
    if selected < 0:
        return

    if not 0 <= ui.start_index < len(spans) or spans[ui.start_index].top != ui.scroll_line:
        ui.start_index = start_pos_from_scroll_line(spans, ui.scroll_line)

    if selected < ui.start_index:
        ui.start_index = selected
    else:
        last = ui.start_index + max(slots_from(spans, ui.start_index, view_height), 1) - 1
        if selected > last:
            ui.start_index += selected - last
    ui.start_index = min(max(ui.start_index, 0), len(spans) - 1)
    ui.scroll_line = min(max_scroll, spans[ui.start_index].top)


def capture_top_anchor(state: AppState) -> Optional[str]:
    """Id of the item rendered at the top of the feed viewport."""
    spans = visible_spans(state)
    if not spans:
        return None
    pos = state.ui.start_index
    if not 0 <= pos < len(spans):
        pos = start_pos_from_scroll_line(spans, state.ui.scroll_line)
    return state.feed.items[spans[pos].idx].post.id


def restore_top_anchor(state: AppState, anchor_id: Optional[str]) -> None:
    if not anchor_id or not anchor_id.strip():
        return
    spans = visible_spans(state)
    if not spans:
        state.ui.start_index = 0
        state.ui.scroll_line = 0
        return
    for pos, span in enumerate(spans):
        if state.feed.items[span.idx].post.id == anchor_id:
            state.ui.start_index = pos
            state.ui.scroll_line = span.top
            return


def set_cursor_by_id(state: AppState, post_id: str) -> bool:
    if not post_id or not post_id.strip():
        return False
    for i, item in enumerate(state.feed.items):
        if item.post.id == post_id:
            state.feed.cursor = i
            ensure_visible_cursor(state)
            ensure_feed_cursor_visible(state)
            return True
    return False


def maybe_start_prefetch(state: AppState) -> bool:
    """Claim an older-page fetch when the cursor nears the last visible item.

    On True the view is marked loading-more and its sequence has advanced;
    the caller issues the fetch.
    """
    feed = state.feed
    page = feed.page
    if page.loading or page.loading_more or not feed.items:
        return False
    if feed.source == FeedSource.TRENDING:
        return False
    if not page.has_more or not page.oldest_id:
        return False
    visible = visible_indices(state)
    if not visible or feed.cursor not in visible:
        return False
    if visible.index(feed.cursor) < len(visible) - PREFETCH_TRIGGER:
        return False
    page.loading_more = True
    page.seq += 1
    return True
