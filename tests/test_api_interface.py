"""Tests for text cleanup and the Mastodon REST client against a mocked session."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
import requests

from fedirant.api_interface import (
    APIError,
    EmptyContentError,
    MastodonAPI,
    parse_timestamp,
    sanitize_for_terminal,
    strip_html,
    with_hashtag,
)


def response(payload=None, status=200, text=""):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.content = b"x" if payload is not None else b""
    resp.json.return_value = payload
    return resp


STATUS = {
    "id": "42",
    "content": "<p>Hello &amp; welcome</p><p>second<br/>line</p>",
    "created_at": "2025-03-01T12:00:00.000Z",
    "url": "https://example.social/@ana/42",
    "favourited": True,
    "favourites_count": 3,
    "replies_count": 1,
    "in_reply_to_id": None,
    "account": {"id": "7", "acct": "ana", "display_name": "Ana \x1b[31mRed"},
    "media_attachments": [
        {
            "id": 5,
            "type": "image",
            "url": "https://files/a.png",
            "preview_url": "https://files/a_small.png",
            "description": " a cat ",
            "meta": {"original": {"width": 640, "height": 480}},
        }
    ],
}


@pytest.fixture
def api():
    client = MastodonAPI("https://example.social/", token="secret-token")
    client.session = MagicMock()
    return client


class TestTextCleanup:
    """Tests for HTML stripping and terminal sanitising."""

    def test_strip_html_keeps_paragraph_breaks(self):
        """Paragraphs and line breaks become newlines and entities are decoded."""
        assert strip_html("<p>a &lt;b&gt;</p><p>c<br>d</p>") == "a <b>\nc\nd\n"

    def test_sanitize_removes_escapes_and_controls(self):
        """Escape sequences and control characters are removed."""
        assert sanitize_for_terminal("ok\x1b[2Jgo\x07ne\x1b]0;title\x07!\tx\ny") == "okgone!\tx\ny"
        assert sanitize_for_terminal(None) == ""

    def test_with_hashtag(self):
        """The tag is appended once and only when missing."""
        assert with_hashtag(" hi ", "terminalrant") == "hi\n\n#terminalrant"
        assert with_hashtag("hi #terminalrant", "terminalrant") == "hi #terminalrant"
        with pytest.raises(EmptyContentError):
            with_hashtag("   ", "terminalrant")

    def test_parse_timestamp(self):
        """ISO timestamps parse as UTC; junk gives the epoch."""
        assert parse_timestamp("2025-03-01T12:00:00Z") == datetime(2025, 3, 1, 12, tzinfo=timezone.utc)
        assert parse_timestamp("garbage").year == 1970
        assert parse_timestamp(None).year == 1970
        naive = datetime(2025, 1, 1)
        assert parse_timestamp(naive).tzinfo is timezone.utc


class TestMastodonAPI:
    """Tests for the REST client against a mocked session."""

    def test_token_sets_bearer_header(self):
        """The access token is sent as a bearer header."""
        client = MastodonAPI("https://example.social", token="abc")
        assert client.session.headers["Authorization"] == "Bearer abc"

    def test_tag_timeline_converts_statuses(self, api):
        """Statuses become posts with cleaned text and media."""
        api.account_id = "7"
        api.session.request.return_value = response([STATUS])
        posts = api.fetch_by_tag_page("terminalrant", 20, "99")

        method, url = api.session.request.call_args[0]
        assert (method, url) == ("GET", "https://example.social/api/v1/timelines/tag/terminalrant")
        assert api.session.request.call_args[1]["params"] == {"limit": 20, "max_id": "99"}

        post = posts[0]
        assert post.id == "42"
        assert post.author == "Ana Red"
        assert post.content == "Hello & welcome\nsecond\nline\n"
        assert post.liked_by_user and post.likes == 3 and post.comments == 1
        assert post.in_reply_to_id == ""
        assert post.is_own
        media = post.attachments[0]
        assert (media.id, media.kind, media.description, media.width) == ("5", "image", "a cat", 640)

    def test_tag_is_escaped_in_path(self, api):
        """Characters that would change the URL structure stay inside the tag segment."""
        api.session.request.return_value = response([])
        api.fetch_by_tag_page("a/b?c#d", 20)
        _, url = api.session.request.call_args[0]
        assert url == "https://example.social/api/v1/timelines/tag/a%2Fb%3Fc%23d"

    def test_http_error_carries_status(self, api):
        """Non-2xx responses raise with the status code."""
        api.session.request.return_value = response(status=404, text="not found")
        with pytest.raises(APIError) as err:
            api.fetch_home_page(20)
        assert err.value.status == 404

    def test_transport_error(self, api):
        """Connection failures are wrapped."""
        api.session.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(APIError):
            api.like("1")

    def test_trending_falls_back_to_public(self, api):
        """A failing trending endpoint falls back to the public timeline."""
        api.session.request.side_effect = [response(status=404), response([STATUS])]
        posts = api.fetch_trending_page(20)
        assert [p.id for p in posts] == ["42"]
        assert api.session.request.call_args[0][1].endswith("/timelines/public")

    def test_reply_and_post_append_the_tag(self, api):
        """Posts and replies carry the hashtag."""
        api.session.request.return_value = response(STATUS)
        api.reply("9", "thanks", "terminalrant")
        data = api.session.request.call_args[1]["data"]
        assert data == {"status": "thanks\n\n#terminalrant", "in_reply_to_id": "9", "visibility": "public"}

    def test_empty_body_is_none(self, api):
        """An empty response body gives None."""
        api.session.request.return_value = response(None)
        assert api.delete("1") is None

    def test_lookup_following_dedupes(self, api):
        """Relationship ids are sent once each."""
        api.session.request.return_value = response([{"id": "1", "following": True}, {"id": "2"}])
        result = api.lookup_following(["1", " 1", "", "2"])
        assert result == {"1": True, "2": False}
        assert api.session.request.call_args[1]["params"] == {"id[]": ["1", "2"]}

    def test_lookup_following_skips_empty(self, api):
        """Blank ids never reach the server."""
        assert api.lookup_following(["", " "]) == {}
        api.session.request.assert_not_called()

    def test_blank_account_id_rejected(self, api):
        """A blank account id raises before any request."""
        with pytest.raises(APIError):
            api.follow_user("  ")

    def test_current_profile_remembers_id(self, api):
        """Fetching the own profile caches the account id."""
        api.session.request.return_value = response(
            {"id": "7", "acct": "ana", "note": "<p>bio</p>", "followers_count": 2, "avatar": "https://a/x.png"}
        )
        profile = api.current_profile()
        assert profile.bio == "bio\n"
        assert profile.avatar_url == "https://a/x.png"
        assert api.current_account_id() == "7"
        assert api.session.request.call_count == 1
