"""Tests for the visibility filter and cursor stepping over visible items."""

from fedirant.models import FeedItem, FeedSource
from fedirant.state import AppState, FeedState
from fedirant.visibility import (
    ensure_visible_cursor,
    is_at_visible_end,
    is_visible,
    move_cursor_visible,
    selected_visible_post,
    visible_indices,
)
from conftest import make_post, make_posts


def state_with(count, source=FeedSource.PRIMARY):
    return AppState(feed=FeedState(items=[FeedItem(post=p) for p in make_posts(1, count)], source=source))


class TestIsVisible:
    """Tests for the per-item visibility predicate."""

    def test_hidden_post_and_author(self):
        """Hidden ids and hidden authors are both filtered out."""
        state = state_with(3)
        state.moderation.hidden_ids.add("1")
        state.moderation.hidden_authors.add("acct-2")
        assert visible_indices(state) == [2]

    def test_show_hidden_reveals_everything(self):
        """Showing hidden posts lifts the hide filter."""
        state = state_with(3)
        state.moderation.hidden_ids.add("1")
        state.moderation.show_hidden = True
        assert visible_indices(state) == [0, 1, 2]

    def test_following_view_rules(self):
        """Following view shows followed and not-yet-known authors only."""
        state = state_with(0, source=FeedSource.FOLLOWING)
        rel = state.relationships.following_by_id
        rel["acct-1"] = True
        rel["acct-2"] = False
        assert is_visible(make_post(1), state)
        assert not is_visible(make_post(2), state)
        # unknown relationship and missing account stay visible
        assert is_visible(make_post(3), state)
        assert is_visible(make_post(4, account_id=""), state)
        assert not is_visible(make_post(5, is_own=True), state)

    def test_unfollowed_authors_show_outside_following(self):
        """Relationships only matter in the following view."""
        state = state_with(0)
        state.relationships.following_by_id["acct-2"] = False
        assert is_visible(make_post(2), state)


class TestCursor:
    """Tests for keeping the cursor on visible items."""

    def test_ensure_moves_forward_then_back(self):
        """A hidden cursor moves to the next visible item, else the previous one."""
        state = state_with(4)
        state.feed.cursor = 1
        state.moderation.hidden_ids.update({"2", "3"})
        ensure_visible_cursor(state)
        assert state.feed.cursor == 3

        state.feed.cursor = 3
        state.moderation.hidden_ids.add("4")
        ensure_visible_cursor(state)
        assert state.feed.cursor == 0

    def test_ensure_relocates_while_showing_hidden(self):
        """Showing hidden posts does not keep the cursor on an unfollowed author."""
        state = state_with(3, source=FeedSource.FOLLOWING)
        state.moderation.show_hidden = True
        state.relationships.following_by_id["acct-1"] = False
        ensure_visible_cursor(state)
        assert state.feed.cursor == 1
        assert selected_visible_post(state).id == "2"

    def test_ensure_clamps(self):
        """An out-of-range cursor is pulled back onto the list."""
        state = state_with(2)
        state.feed.cursor = 9
        ensure_visible_cursor(state)
        assert state.feed.cursor == 1

    def test_move_skips_hidden(self):
        """Stepping jumps over hidden items."""
        state = state_with(5)
        state.moderation.hidden_ids.update({"2", "3"})
        move_cursor_visible(state, 1)
        assert state.feed.cursor == 3
        move_cursor_visible(state, -1)
        assert state.feed.cursor == 0

    def test_move_stops_at_edges(self):
        """Stepping never wraps around."""
        state = state_with(2)
        move_cursor_visible(state, -1)
        assert state.feed.cursor == 0
        state.feed.cursor = 1
        move_cursor_visible(state, 1)
        assert state.feed.cursor == 1

    def test_selected_and_end(self):
        """Only a visible cursor item counts as selected or as the end."""
        state = state_with(3)
        state.feed.cursor = 2
        assert selected_visible_post(state).id == "3"
        assert is_at_visible_end(state)
        state.moderation.hidden_ids.add("3")
        assert selected_visible_post(state) is None
        assert not is_at_visible_end(state)
