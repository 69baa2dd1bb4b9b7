"""Shared test fixtures: in-memory services, post factories and a model factory."""

from datetime import datetime, timedelta, timezone
from typing import Dict, List

import pytest

from fedirant.api_interface import APIError, AccountService, PostService, TimelineService
from fedirant.engine import Model
from fedirant.models import BlockedUser, MediaAttachment, Post, Profile

BASE_TIME = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_post(n, **kw) -> Post:
    """Post ``n`` is ``n`` minutes older than the base time, so lower numbers sort first."""
    defaults = dict(
        id=str(n),
        account_id=f"acct-{n}",
        author=f"Author {n}",
        handle=f"user{n}@example.social",
        content=f"post number {n} #terminalrant",
        timestamp=BASE_TIME - timedelta(minutes=int(n) if str(n).isdigit() else 0),
        url=f"https://example.social/@user{n}/{n}",
    )
    defaults.update(kw)
    return Post(**defaults)


def make_posts(start: int, count: int, **kw) -> List[Post]:
    return [make_post(i, **kw) for i in range(start, start + count)]


def image(url="https://files.example.social/a.png", preview="https://files.example.social/a_small.png") -> MediaAttachment:
    return MediaAttachment(id="m1", kind="image", url=url, preview_url=preview, description="a cat")


def _page(posts: List[Post], limit: int, before_id: str) -> List[Post]:
    if before_id:
        ids = [p.id for p in posts]
        if before_id not in ids:
            return []
        posts = posts[ids.index(before_id) + 1:]
    return list(posts[:limit])


class FakeTimeline(TimelineService):
    """Serves fixed newest-first lists and records every call."""

    def __init__(self):
        self.by_tag: Dict[str, List[Post]] = {}
        self.home: List[Post] = []
        self.trending: List[Post] = []
        self.threads: Dict[str, tuple] = {}
        self.calls: List[tuple] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise APIError("boom", status=500)

    def fetch_by_tag(self, tag, limit=20):
        self.calls.append(("tag", tag, ""))
        self._check()
        return _page(self.by_tag.get(tag, []), limit, "")

    def fetch_by_tag_page(self, tag, limit, before_id=""):
        self.calls.append(("tag", tag, before_id))
        self._check()
        return _page(self.by_tag.get(tag, []), limit, before_id)

    def fetch_home_page(self, limit, before_id=""):
        self.calls.append(("home", before_id))
        self._check()
        return _page(self.home, limit, before_id)

    def fetch_trending_page(self, limit, before_id=""):
        self.calls.append(("trending", before_id))
        self._check()
        return _page(self.trending, limit, before_id)

    def fetch_thread(self, post_id):
        self.calls.append(("thread", post_id))
        self._check()
        ancestors, descendants = self.threads.get(post_id, ([], []))
        return list(ancestors), list(descendants)


class FakeAccount(AccountService):
    """In-memory account service with a fixed own profile."""

    def __init__(self):
        self.own = Profile(id="me", handle="me@example.social", display_name="Me", bio="hello")
        self.profiles: Dict[str, Profile] = {}
        self.posts: Dict[str, List[Post]] = {}
        self.following: Dict[str, bool] = {}
        self.blocked: List[BlockedUser] = []
        self.calls: List[tuple] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise APIError("account boom", status=500)

    def current_account_id(self):
        return self.own.id

    def current_profile(self):
        self._check()
        return self.own

    def update_profile(self, display_name, bio):
        self.calls.append(("update_profile", display_name, bio))
        self._check()
        self.own.display_name = display_name
        self.own.bio = bio

    def profile_by_id(self, account_id):
        self.calls.append(("profile", account_id))
        self._check()
        return self.profiles.get(account_id, Profile(id=account_id, handle=f"{account_id}@example.social"))

    def posts_by_account(self, account_id, limit=20, before_id=""):
        self.calls.append(("posts", account_id))
        self._check()
        return _page(self.posts.get(account_id, []), limit, before_id)

    def follow_user(self, account_id):
        self.calls.append(("follow", account_id))
        self._check()
        self.following[account_id] = True

    def unfollow_user(self, account_id):
        self.calls.append(("unfollow", account_id))
        self._check()
        self.following[account_id] = False

    def lookup_following(self, account_ids):
        ids = list(account_ids)
        self.calls.append(("lookup", tuple(ids)))
        self._check()
        return {a: self.following.get(a, False) for a in ids}

    def block_user(self, account_id):
        self.calls.append(("block", account_id))
        self._check()

    def unblock_user(self, account_id):
        self.calls.append(("unblock", account_id))
        self._check()
        self.blocked = [u for u in self.blocked if u.account_id != account_id]

    def list_blocked_users(self, limit=80):
        self.calls.append(("blocked", limit))
        self._check()
        return list(self.blocked[:limit])


class FakePosts(PostService):
    """Post service that mints server ids from 1001 upwards."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail = False
        self._next = 1000

    def _check(self):
        if self.fail:
            raise APIError("post boom", status=422)

    def _server_post(self, content, hashtag, parent_id=""):
        self._next += 1
        return Post(
            id=str(self._next),
            account_id="me",
            author="Me",
            handle="me@example.social",
            content=f"{content} #{hashtag}",
            timestamp=BASE_TIME + timedelta(minutes=5),
            in_reply_to_id=parent_id,
        )

    def post(self, content, hashtag):
        self.calls.append(("post", content, hashtag))
        self._check()
        return self._server_post(content, hashtag)

    def edit(self, post_id, content, hashtag):
        self.calls.append(("edit", post_id, content))
        self._check()
        return Post(id=post_id, account_id="me", content=f"{content} #{hashtag}", timestamp=BASE_TIME)

    def delete(self, post_id):
        self.calls.append(("delete", post_id))
        self._check()

    def like(self, post_id):
        self.calls.append(("like", post_id))
        self._check()

    def unlike(self, post_id):
        self.calls.append(("unlike", post_id))
        self._check()

    def reply(self, parent_id, content, hashtag):
        self.calls.append(("reply", parent_id, content))
        self._check()
        return self._server_post(content, hashtag, parent_id)


@pytest.fixture
def timeline():
    return FakeTimeline()


@pytest.fixture
def account():
    return FakeAccount()


@pytest.fixture
def posts():
    return FakePosts()


@pytest.fixture
def make_model(timeline, account, posts):
    """Build a Model over the fakes with media previews off (no network)."""

    def factory(**kw) -> Model:
        kw.setdefault("account", account)
        kw.setdefault("posts", posts)
        model = Model(timeline, **kw)
        model.state.media.show_preview = False
        return model

    return factory


def drain(model: Model, cmds, limit: int = 50) -> None:
    """Run commands synchronously and feed their messages back until none remain."""
    queue = list(cmds)
    steps = 0
    while queue and steps < limit:
        cmd = queue.pop(0)
        msg = cmd()
        steps += 1
        if msg is not None:
            _, more = model.update(msg)
            queue.extend(more)


@pytest.fixture
def loaded_model(make_model, timeline):
    """A model whose primary feed holds posts 1..25 with the first page of 20 loaded."""
    timeline.by_tag["terminalrant"] = make_posts(1, 25)
    model = make_model()
    drain(model, model.init())
    return model
