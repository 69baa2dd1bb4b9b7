"""Tests for the transition engine, driven through messages and key presses."""

import copy
import json
from datetime import timedelta

from fedirant.engine import (
    EMPTY_CONTENT_NOTICE,
    END_OF_FEED_NOTICE,
    END_OF_TRENDING_NOTICE,
    LOADING_OLDER_NOTICE,
    NO_OLDER_NOTICE,
)
from fedirant.media import avatar_key, base_key
from fedirant.messages import (
    CreatePost,
    EditPost,
    KeyPressed,
    MediaPreviewLoaded,
    MediaTick,
    Message,
    PageError,
    PageLoaded,
    PostsError,
    PostsLoaded,
    ProfileLoaded,
    RelationshipsLoaded,
    ReplyPost,
    ResetFeedState,
    Resized,
    ThreadLoaded,
)
from fedirant.models import BlockedUser, FeedSource, ItemStatus, Profile
from fedirant.pagination import capture_top_anchor
from fedirant.visibility import visible_indices
from conftest import BASE_TIME, drain, image, make_post, make_posts


def press(model, *keys):
    for key in keys:
        _, cmds = model.update(KeyPressed(key))
        drain(model, cmds)


def thread_calls(timeline):
    return [c[1] for c in timeline.calls if c[0] == "thread"]


def ids(model):
    return [it.post.id for it in model.state.feed.items]


class TestFeedLoading:
    """Tests for initial loads, older pages and the stale-result guard."""

    def test_first_page(self, loaded_model, timeline):
        """A full first page is loaded newest first and leaves more to fetch."""
        feed = loaded_model.state.feed
        assert len(feed.items) == 20
        assert feed.items[0].post.id == "1"
        assert feed.page.oldest_id == "20"
        assert feed.page.has_more
        assert not feed.page.loading
        assert timeline.calls[0] == ("tag", "terminalrant", "")

    def test_stale_results_leave_state_unchanged(self, loaded_model):
        """Results for an old sequence or another view change nothing at all."""
        seq = loaded_model.state.feed.page.seq
        stale = [
            PostsLoaded(posts=make_posts(100, 3), query_key="tag:terminalrant", seq=seq + 1),
            PostsLoaded(posts=make_posts(100, 3), query_key="trending", seq=seq),
            PostsError(error="late", query_key="tag:terminalrant", seq=seq + 1),
            PostsError(error="late", query_key="following", seq=seq),
            PageLoaded(posts=make_posts(100, 3), query_key="tag:terminalrant", seq=seq + 1),
            PageLoaded(posts=make_posts(100, 3), query_key="following", seq=seq),
            PageError(error="late", query_key="tag:terminalrant", seq=seq + 1),
            PageError(error="late", query_key="trending", seq=seq),
        ]
        before = copy.deepcopy(loaded_model.state)
        for msg in stale:
            _, cmds = loaded_model.update(msg)
            assert cmds == []
            assert loaded_model.state == before, type(msg).__name__

    def test_scrolling_prefetches_older_page(self, loaded_model, timeline):
        """Nearing the end fetches the next page without moving the viewport or selection."""
        press(loaded_model, *["j"] * 16)
        assert ("tag", "terminalrant", "20") not in timeline.calls

        _, cmds = loaded_model.update(KeyPressed("j"))
        state = loaded_model.state
        assert state.feed.page.loading_more
        anchor = capture_top_anchor(state)
        top = (state.ui.start_index, state.ui.scroll_line)
        assert anchor

        drain(loaded_model, cmds)
        state = loaded_model.state
        feed = state.feed
        assert ("tag", "terminalrant", "20") in timeline.calls
        assert len(feed.items) == 25
        assert feed.cursor == 17
        assert feed.items[feed.cursor].post.id == "18"
        assert not feed.page.has_more
        assert capture_top_anchor(state) == anchor
        assert (state.ui.start_index, state.ui.scroll_line) == top

    def test_page_for_previous_view_is_dropped(self, loaded_model):
        """An older page arriving after a tab switch is discarded."""
        _, older = loaded_model.update(KeyPressed("m"))
        loaded_model.update(KeyPressed("t"))
        drain(loaded_model, older)
        assert loaded_model.state.feed.source == FeedSource.TRENDING
        assert loaded_model.state.feed.items == []

    def test_load_more_notices(self, loaded_model):
        """A second manual load while one is in flight says so."""
        loaded_model.update(KeyPressed("m"))
        loaded_model.update(KeyPressed("m"))
        assert loaded_model.state.feed.notice == LOADING_OLDER_NOTICE

    def test_no_older_posts(self, make_model, timeline):
        """An empty older page ends the feed and further loads report it."""
        timeline.by_tag["terminalrant"] = make_posts(1, 20)
        model = make_model()
        drain(model, model.init())
        press(model, "m")
        assert model.state.feed.notice == END_OF_FEED_NOTICE
        assert not model.state.feed.page.has_more
        press(model, "m")
        assert model.state.feed.notice == NO_OLDER_NOTICE

    def test_trending_end_notice(self, make_model, timeline):
        """Trending never paginates and notes its end on the last item."""
        timeline.trending = make_posts(1, 3)
        model = make_model(initial_source=FeedSource.TRENDING)
        drain(model, model.init())
        assert not model.state.feed.page.has_more
        press(model, "j")
        assert model.state.feed.notice == ""
        press(model, "j")
        assert model.state.feed.notice == END_OF_TRENDING_NOTICE

    def test_following_seeds_from_recent_follows(self, make_model, account):
        """An empty home timeline is filled from recently followed accounts."""
        account.posts["acct-9"] = [make_post(9)]
        account.following["acct-9"] = True
        model = make_model(initial_source=FeedSource.FOLLOWING)
        model.state.relationships.recent_follows = ["acct-9"]
        drain(model, model.init())
        assert ids(model) == ["9"]
        assert visible_indices(model.state) == [0]
        assert not model.state.feed.page.has_more

    def test_following_drops_own_posts(self, make_model, timeline):
        """The following view never lists the user's own posts."""
        timeline.home = [make_post(1, is_own=True), make_post(2)]
        model = make_model(initial_source=FeedSource.FOLLOWING)
        drain(model, model.init())
        assert ids(model) == ["2"]


class TestTabsAndHashtag:
    """Tests for switching feed sources."""

    def test_tabs_cycle(self, loaded_model):
        """t and T walk the tab order in both directions."""
        loaded_model.update(KeyPressed("t"))
        assert loaded_model.state.feed.source == FeedSource.TRENDING
        assert loaded_model.state.feed.notice == "Feed: trending"
        loaded_model.update(KeyPressed("t"))
        loaded_model.update(KeyPressed("t"))
        assert loaded_model.state.feed.source == FeedSource.PRIMARY
        loaded_model.update(KeyPressed("T"))
        assert loaded_model.state.feed.source == FeedSource.FOLLOWING

    def test_tabs_refused_in_detail(self, loaded_model):
        """Tabs stay put while a thread is open."""
        press(loaded_model, "enter", "t")
        assert loaded_model.state.feed.source == FeedSource.PRIMARY
        assert loaded_model.state.feed.notice == "Exit detail view to switch tabs."

    def test_switch_persists_preferences(self, make_model, timeline, tmp_path):
        """Changing source writes the preference file."""
        path = tmp_path / "ui_state.json"
        timeline.by_tag["terminalrant"] = make_posts(1, 5)
        model = make_model(prefs_path=str(path))
        drain(model, model.init())
        press(model, "t")
        assert json.loads(path.read_text(encoding="utf-8"))["feed_source"] == "trending"

    def test_hashtag_prompt(self, loaded_model, timeline):
        """A typed hashtag becomes a custom tab and is fetched."""
        press(loaded_model, "H")
        assert loaded_model.state.ui.hashtag_input
        assert loaded_model.state.ui.hashtag_buffer == "terminalrant"
        press(loaded_model, *["backspace"] * 12, "p", "y")
        assert loaded_model.state.ui.hashtag_buffer == "py"

        _, cmds = loaded_model.update(KeyPressed("enter"))
        feed = loaded_model.state.feed
        assert feed.notice == "Switched to #py"
        assert feed.source == FeedSource.CUSTOM
        assert feed.hashtag == "py"
        drain(loaded_model, cmds)
        assert ("tag", "py", "") in timeline.calls
        assert loaded_model.source_label() == "#py"
        assert FeedSource.CUSTOM in loaded_model.tab_order()

    def test_escape_cancels_prompt(self, loaded_model):
        """Escape leaves the hashtag untouched."""
        press(loaded_model, "H", "x", "escape")
        assert not loaded_model.state.ui.hashtag_input
        assert loaded_model.state.feed.hashtag == "terminalrant"


class TestOptimisticPosts:
    """Tests for local-first creates, edits, deletes and likes."""

    def test_create_reconciles_and_opens_detail(self, loaded_model):
        """A new post shows at once and is swapped for the server copy."""
        _, cmds = loaded_model.update(CreatePost(content="hello world"))
        item = loaded_model.state.feed.items[0]
        assert item.post.id.startswith("local-")
        assert item.status == ItemStatus.PENDING_CREATE
        assert loaded_model.state.ui.status == "Posting..."

        drain(loaded_model, cmds)
        item = loaded_model.state.feed.items[0]
        assert item.post.id == "1001"
        assert item.status == ItemStatus.NORMAL
        assert loaded_model.is_detail_view()
        assert loaded_model.take_status() == "Post published!"
        assert loaded_model.take_status() == ""

    def test_create_after_refresh_keeps_one_copy(self, loaded_model, timeline):
        """A refresh that already loaded the new post does not leave a duplicate."""
        _, cmds = loaded_model.update(CreatePost(content="hello  world"))
        server = make_post(1001, content="hello world #terminalrant", timestamp=BASE_TIME + timedelta(minutes=5))
        timeline.by_tag["terminalrant"] = [server] + make_posts(1, 25)
        press(loaded_model, "r")
        assert ids(loaded_model).count("1001") == 1
        assert ids(loaded_model)[0].startswith("local-")

        drain(loaded_model, cmds)
        assert ids(loaded_model).count("1001") == 1
        assert not any(i.startswith("local-") for i in ids(loaded_model))

    def test_result_after_list_reset_is_added(self, loaded_model):
        """A published post whose pending item was cleared still appears in its feed."""
        _, cmds = loaded_model.update(CreatePost(content="brand new"))
        press(loaded_model, "t", "T")
        assert loaded_model.state.feed.source == FeedSource.PRIMARY
        assert not any(i.startswith("local-") for i in ids(loaded_model))

        drain(loaded_model, cmds)
        assert ids(loaded_model)[0] == "1001"
        assert ids(loaded_model).count("1001") == 1
        assert not loaded_model.is_detail_view()

    def test_result_for_other_view_is_not_added(self, loaded_model):
        """A post created in the tag feed is not dropped into trending."""
        _, cmds = loaded_model.update(CreatePost(content="brand new"))
        press(loaded_model, "t")
        drain(loaded_model, cmds)
        assert loaded_model.state.feed.source == FeedSource.TRENDING
        assert "1001" not in ids(loaded_model)

    def test_create_failure_is_marked(self, loaded_model, posts):
        """A failed create stays visible with its error."""
        posts.fail = True
        _, cmds = loaded_model.update(CreatePost(content="hello world"))
        drain(loaded_model, cmds)
        item = loaded_model.state.feed.items[0]
        assert item.status == ItemStatus.FAILED
        assert item.error == "post boom"
        assert loaded_model.state.ui.status == "Error: post boom"

    def test_blank_content_is_rejected(self, loaded_model, posts):
        """Blank content never reaches the post service."""
        _, cmds = loaded_model.update(CreatePost(content="   "))
        assert cmds == []
        assert loaded_model.state.feed.notice == EMPTY_CONTENT_NOTICE
        assert posts.calls == []

    def test_failed_edit_rolls_back(self, loaded_model, posts):
        """A failed edit restores the old content and marks the item failed."""
        loaded_model.state.feed.items[0].post.is_own = True
        posts.fail = True
        _, cmds = loaded_model.update(EditPost(post_id="1", content="changed"))
        assert loaded_model.state.feed.items[0].post.content == "changed"
        drain(loaded_model, cmds)
        item = loaded_model.state.feed.items[0]
        assert item.status == ItemStatus.FAILED
        assert item.post.content == "post number 1 #terminalrant"

    def test_delete_after_confirmation(self, loaded_model, posts):
        """d then y deletes the selected own post."""
        loaded_model.state.feed.items[0].post.is_own = True
        press(loaded_model, "d")
        assert loaded_model.state.detail.confirm_delete
        press(loaded_model, "y")
        assert posts.calls == [("delete", "1")]
        assert loaded_model.state.feed.items[0].post.id == "2"
        assert loaded_model.state.ui.status == "Post deleted."

    def test_delete_failure(self, loaded_model, posts):
        """A failed delete keeps the item, marked failed."""
        loaded_model.state.feed.items[0].post.is_own = True
        posts.fail = True
        press(loaded_model, "d", "y")
        assert loaded_model.state.feed.items[0].status == ItemStatus.FAILED
        assert loaded_model.state.ui.status == "Error deleting: post boom"

    def test_delete_needs_own_post(self, loaded_model):
        """Other people's posts cannot be deleted."""
        press(loaded_model, "d")
        assert not loaded_model.state.detail.confirm_delete

    def test_like_and_rollback(self, loaded_model, posts):
        """A failed unlike puts the like back."""
        press(loaded_model, "l")
        post = loaded_model.state.feed.items[0].post
        assert post.liked_by_user and post.likes == 1

        posts.fail = True
        press(loaded_model, "l")
        post = loaded_model.state.feed.items[0].post
        assert post.liked_by_user and post.likes == 1
        assert loaded_model.state.ui.status == "Error liking: post boom"
        assert posts.calls == [("like", "1"), ("unlike", "1")]


class TestThreads:
    """Tests for the detail view and its thread cache."""

    def _with_thread(self, timeline):
        timeline.threads["1"] = ([], [make_post(101, in_reply_to_id="1"), make_post(102, in_reply_to_id="101")])

    def test_open_uses_cache_on_return(self, loaded_model, timeline):
        """Reopening a thread reads the cache instead of fetching."""
        self._with_thread(timeline)
        press(loaded_model, "enter")
        detail = loaded_model.state.detail
        assert [p.id for p in detail.replies] == ["101", "102"]
        assert not detail.loading_replies

        press(loaded_model, "escape")
        assert not loaded_model.is_detail_view()
        press(loaded_model, "enter")
        assert [p.id for p in loaded_model.state.detail.replies] == ["101", "102"]
        assert thread_calls(timeline) == ["1"]

    def test_drill_into_reply_and_back(self, loaded_model, timeline):
        """Enter on a reply focuses it and escape returns to the root."""
        self._with_thread(timeline)
        press(loaded_model, "enter", "j", "enter")
        assert loaded_model.state.detail.focused.id == "101"
        press(loaded_model, "escape")
        detail = loaded_model.state.detail
        assert detail.focused is None
        assert [p.id for p in detail.replies] == ["101", "102"]
        assert thread_calls(timeline) == ["1", "101"]

    def test_jump_to_parent(self, loaded_model, timeline):
        """u focuses the selected reply's parent."""
        self._with_thread(timeline)
        press(loaded_model, "enter", "j", "j", "u")
        detail = loaded_model.state.detail
        assert detail.focused.id == "101"
        assert [p.id for p in detail.view_stack] == ["102"]

    def test_stale_thread_is_cached_not_shown(self, loaded_model):
        """A thread for another post fills the cache but not the view."""
        loaded_model.update(KeyPressed("enter"))
        loaded_model.update(ThreadLoaded(post_id="5", descendants=[make_post(50, in_reply_to_id="5")]))
        detail = loaded_model.state.detail
        assert detail.reply_all == []
        assert "5" in detail.thread_cache

    def test_reply_pages(self, loaded_model, timeline):
        """Replies are revealed a page at a time."""
        timeline.threads["1"] = ([], make_posts(101, 30, in_reply_to_id="1"))
        press(loaded_model, "enter")
        detail = loaded_model.state.detail
        assert len(detail.replies) == 20
        assert detail.has_more_replies
        press(loaded_model, "m")
        assert len(detail.replies) == 30
        assert not detail.has_more_replies

    def test_reply_is_shown_then_reconciled(self, loaded_model, timeline):
        """An optimistic reply is swapped for the server copy in view and cache."""
        timeline.threads["1"] = ([], [make_post(101, in_reply_to_id="1")])
        press(loaded_model, "enter")
        _, cmds = loaded_model.update(ReplyPost(parent_id="101", content="agreed"))
        detail = loaded_model.state.detail
        assert detail.replies[-1].id.startswith("local-reply-")

        drain(loaded_model, cmds)
        assert [p.id for p in detail.replies] == ["101", "1001"]
        assert [p.id for p in detail.thread_cache.get("1").descendants] == ["101", "1001"]
        assert loaded_model.state.ui.status == "Reply posted."

    def test_failed_reply_is_removed(self, loaded_model, timeline, posts):
        """A failed reply disappears from view and cache."""
        timeline.threads["1"] = ([], [make_post(101, in_reply_to_id="1")])
        press(loaded_model, "enter")
        posts.fail = True
        _, cmds = loaded_model.update(ReplyPost(parent_id="1", content="agreed"))
        drain(loaded_model, cmds)
        detail = loaded_model.state.detail
        assert [p.id for p in detail.replies] == ["101"]
        assert [p.id for p in detail.thread_cache.get("1").descendants] == ["101"]
        assert loaded_model.state.ui.status == "Error: post boom"

    def test_reply_from_feed_leaves_feed_alone(self, loaded_model):
        """Replying outside an open thread does not touch the feed list."""
        _, cmds = loaded_model.update(ReplyPost(parent_id="5", content="agreed"))
        drain(loaded_model, cmds)
        assert len(loaded_model.state.feed.items) == 20
        assert loaded_model.state.ui.status == "Reply posted."

    def test_forced_reset_closes_detail(self, loaded_model):
        """Only a forced reset closes the detail view."""
        press(loaded_model, "enter")
        loaded_model.update(ResetFeedState())
        assert loaded_model.is_detail_view()
        loaded_model.update(ResetFeedState(force=True))
        assert not loaded_model.is_detail_view()


class TestModeration:
    """Tests for hiding posts and blocking authors."""

    def test_hide_and_reveal(self, loaded_model):
        """x hides the post and moves on; X shows hidden posts."""
        press(loaded_model, "x")
        state = loaded_model.state
        assert "1" in state.moderation.hidden_ids
        assert state.feed.notice == "Post hidden (X to toggle hidden)"
        assert state.feed.cursor == 1
        press(loaded_model, "X")
        assert state.moderation.show_hidden
        assert state.feed.notice == "Showing hidden posts"

    def test_showing_hidden_still_skips_unfollowed(self, make_model, timeline, account):
        """With hidden posts shown, an unfollowed author still loses the cursor."""
        timeline.home = make_posts(1, 5)
        account.following.update({f"acct-{i}": True for i in range(1, 6)})
        model = make_model(initial_source=FeedSource.FOLLOWING)
        model.state.moderation.show_hidden = True
        drain(model, model.init())
        assert model.state.feed.cursor == 0

        model.update(RelationshipsLoaded(following={"acct-1": False}))
        state = model.state
        assert visible_indices(state) == [1, 2, 3, 4]
        assert state.feed.cursor == 1
        assert model.selected_post().id == "2"

    def test_block_after_confirmation(self, loaded_model, account):
        """b then y blocks the author and hides their posts."""
        press(loaded_model, "b", "y")
        state = loaded_model.state
        assert ("block", "acct-1") in account.calls
        assert "acct-1" in state.moderation.hidden_authors
        assert state.feed.cursor == 1
        assert state.ui.status == "Blocked @user1@example.social. Their posts are hidden."

    def test_cannot_block_self(self, loaded_model):
        """Own posts offer no block prompt."""
        loaded_model.state.feed.items[0].post.is_own = True
        press(loaded_model, "b")
        assert not loaded_model.state.moderation.confirm_block
        assert loaded_model.state.feed.notice == "Cannot block this user."

    def test_unblock_from_list(self, loaded_model, account):
        """Unblocking from the list removes the entry and un-hides the author."""
        account.blocked = [BlockedUser(account_id="acct-7", handle="user7")]
        loaded_model.state.moderation.hidden_authors.add("acct-7")
        press(loaded_model, "B")
        mod = loaded_model.state.moderation
        assert mod.show_blocked
        assert [u.account_id for u in mod.blocked_users] == ["acct-7"]
        press(loaded_model, "u")
        assert mod.confirm_unblock
        press(loaded_model, "y")
        assert mod.blocked_users == []
        assert "acct-7" not in mod.hidden_authors
        assert loaded_model.state.feed.notice == "Unblocked @user7"


class TestRelationshipsAndProfiles:
    """Tests for following and the profile view."""

    def test_follow_after_confirmation(self, loaded_model, account):
        """f then y follows the author and records a recent follow."""
        press(loaded_model, "f")
        rel = loaded_model.state.relationships
        assert rel.confirm_follow and rel.follow_target
        press(loaded_model, "y")
        assert ("follow", "acct-1") in account.calls
        assert rel.following_by_id["acct-1"]
        assert rel.recent_follows == ["acct-1"]
        assert not rel.confirm_follow
        assert loaded_model.state.ui.status == "Followed @user1@example.social"

    def test_n_cancels_a_pending_confirmation_first(self, loaded_model):
        """n answers an open prompt before it means new post."""
        press(loaded_model, "f", "n")
        assert not loaded_model.state.relationships.confirm_follow
        assert loaded_model.take_request() is None
        press(loaded_model, "n")
        assert loaded_model.take_request().kind == "post"

    def test_profile_view(self, loaded_model, account, timeline):
        """A profile loads, follows inline and opens threads it can return from."""
        account.profiles["acct-1"] = Profile(id="acct-1", handle="user1@example.social", followers=3)
        account.posts["acct-1"] = [make_post(1)]
        _, cmds = loaded_model.update(KeyPressed("p"))
        prof = loaded_model.state.profile
        assert prof.show_profile and prof.loading

        loaded_model.update(ProfileLoaded(account_id="acct-9", profile=Profile(id="acct-9")))
        assert prof.loading
        drain(loaded_model, cmds)
        assert not prof.loading
        assert [p.id for p in prof.posts] == ["1"]

        press(loaded_model, "f")
        assert prof.profile.followers == 4

        press(loaded_model, "j", "enter")
        assert loaded_model.is_detail_view()
        assert not prof.show_profile
        assert thread_calls(timeline) == ["1"]
        press(loaded_model, "escape")
        assert prof.show_profile
        assert not loaded_model.is_detail_view()
        press(loaded_model, "escape")
        assert not prof.show_profile


class TestHostRequests:
    """Tests for requests the engine leaves for the host to act on."""

    def test_reply_request(self, loaded_model):
        """c asks the host for a reply dialog quoting the post."""
        press(loaded_model, "c")
        req = loaded_model.take_request()
        assert req.kind == "reply"
        assert req.target_id == "1"
        assert req.extra == "@user1@example.social: post number 1 #terminalrant"
        assert loaded_model.take_request() is None

    def test_edit_request_strips_the_tag(self, loaded_model):
        """e only works on own posts and drops the trailing hashtag."""
        press(loaded_model, "e")
        assert loaded_model.take_request() is None
        loaded_model.state.feed.items[0].post.is_own = True
        press(loaded_model, "e")
        req = loaded_model.take_request()
        assert (req.kind, req.target_id, req.text) == ("edit", "1", "post number 1")

    def test_open_media_without_attachments(self, loaded_model):
        """I on a post without media only shows a notice."""
        _, cmds = loaded_model.update(KeyPressed("I"))
        assert cmds == []
        assert loaded_model.state.feed.notice == "No media on selected post."

    def test_open_media_with_attachments(self, loaded_model):
        """I schedules opening the attachments."""
        loaded_model.state.feed.items[0].post.attachments = [image()]
        _, cmds = loaded_model.update(KeyPressed("I"))
        assert len(cmds) == 1


class TestMediaAndHost:
    """Tests for previews, animation ticks and host events."""

    def test_preview_toggle_requests_thumbnails(self, loaded_model):
        """Turning previews on queues a fetch for the selected post's media."""
        attachment = image()
        loaded_model.state.feed.items[0].post.attachments = [attachment]
        _, cmds = loaded_model.update(KeyPressed("i"))
        assert loaded_model.state.media.show_preview
        assert len(cmds) == 1
        assert base_key(attachment.preview_url) in loaded_model.state.media.loading

    def test_animation_frames_advance(self, loaded_model):
        """Each tick shows the next frame."""
        loaded_model.update(MediaPreviewLoaded(key="k", preview="a", frames=["a", "b"]))
        loaded_model.update(MediaTick())
        assert loaded_model.state.media.previews["k"] == "b"

    def test_failed_previews(self, loaded_model):
        """Media failures are cached; avatar failures are not."""
        media = loaded_model.state.media
        avatar = avatar_key("https://example.social/avatar.png")
        loaded_model.update(MediaPreviewLoaded(key=avatar, error="404"))
        loaded_model.update(MediaPreviewLoaded(key="thumb", error="404"))
        assert avatar not in media.previews
        assert media.previews["thumb"] == ""

    def test_hints_swallow_keys(self, loaded_model):
        """The help dialog consumes keys until closed."""
        press(loaded_model, "?", "j")
        assert loaded_model.state.ui.show_all_hints
        assert loaded_model.state.feed.cursor == 0
        press(loaded_model, "?")
        assert not loaded_model.state.ui.show_all_hints

    def test_resize_clamps(self, loaded_model):
        """A zero height is clamped to one row."""
        loaded_model.update(Resized(width=120, height=0))
        assert loaded_model.state.ui.width == 120
        assert loaded_model.state.ui.height == 1

    def test_unknown_message_is_a_noop(self, loaded_model):
        """Messages without a handler change nothing."""
        before = copy.deepcopy(loaded_model.state)
        state, cmds = loaded_model.update(Message())
        assert cmds == []
        assert state == before
