from datetime import datetime, timezone
import html
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

import requests
from requests import Session

from .models import BlockedUser, MediaAttachment, Post, Profile, PAGE_SIZE

logger = logging.getLogger("fedirant.api")


class APIError(Exception):
    """A remote call failed (transport, HTTP status or unparsable body)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class EmptyContentError(ValueError):
    pass


class TimelineService:
    def fetch_by_tag(self, tag: str, limit: int = PAGE_SIZE) -> List[Post]: ...
    def fetch_by_tag_page(self, tag: str, limit: int, before_id: str = "") -> List[Post]: ...
    def fetch_home_page(self, limit: int, before_id: str = "") -> List[Post]: ...
    def fetch_trending_page(self, limit: int, before_id: str = "") -> List[Post]: ...
    def fetch_thread(self, post_id: str) -> Tuple[List[Post], List[Post]]: ...


class AccountService:
    def current_account_id(self) -> str: ...
    def current_profile(self) -> Profile: ...
    def update_profile(self, display_name: str, bio: str) -> None: ...
    def profile_by_id(self, account_id: str) -> Profile: ...
    def posts_by_account(self, account_id: str, limit: int = PAGE_SIZE, before_id: str = "") -> List[Post]: ...
    def follow_user(self, account_id: str) -> None: ...
    def unfollow_user(self, account_id: str) -> None: ...
    def lookup_following(self, account_ids: Iterable[str]) -> Dict[str, bool]: ...
    def block_user(self, account_id: str) -> None: ...
    def unblock_user(self, account_id: str) -> None: ...
    def list_blocked_users(self, limit: int = 80) -> List[BlockedUser]: ...


class PostService:
    def post(self, content: str, hashtag: str) -> Post: ...
    def edit(self, post_id: str, content: str, hashtag: str) -> Post: ...
    def delete(self, post_id: str) -> None: ...
    def like(self, post_id: str) -> None: ...
    def unlike(self, post_id: str) -> None: ...
    def reply(self, parent_id: str, content: str, hashtag: str) -> Post: ...


# --- text cleanup ---

_TAG_RE = re.compile(r"<[^>]*>")
_LINE_BREAK_RE = re.compile(r"</p>|<br\s*/?>", re.IGNORECASE)
_ANSI_CSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_ANSI_OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
_ANSI_ESC_RE = re.compile(r"\x1b[@-_]")


def sanitize_for_terminal(s: Optional[str]) -> str:
    """Drop escape sequences and control characters, keeping newlines and tabs."""
    if not s:
        return ""
    s = _ANSI_OSC_RE.sub("", s)
    s = _ANSI_CSI_RE.sub("", s)
    s = _ANSI_ESC_RE.sub("", s)
    out = []
    for ch in s:
        code = ord(ch)
        if ch in ("\n", "\t"):
            out.append(ch)
        elif code >= 0x20 and code != 0x7F and not (0x80 <= code <= 0x9F):
            out.append(ch)
    return "".join(out)


def strip_html(s: Optional[str]) -> str:
    s = _LINE_BREAK_RE.sub("\n", s or "")
    s = _TAG_RE.sub("", s)
    s = html.unescape(s)
    return sanitize_for_terminal(s)


def with_hashtag(content: str, hashtag: str) -> str:
    content = (content or "").strip()
    if not content:
        raise EmptyContentError("post cannot be empty")
    tag = "#" + hashtag
    if hashtag and tag not in content:
        content = content + "\n\n" + tag
    return content


def parse_timestamp(raw: Any) -> datetime:
    """Parse an ISO timestamp into an aware UTC datetime (epoch when unusable)."""
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, str) and raw:
        try:
            dt = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("unparsable timestamp %r", raw)
            return datetime(1970, 1, 1, tzinfo=timezone.utc)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    return datetime(1970, 1, 1, tzinfo=timezone.utc)


class MastodonAPI(TimelineService, AccountService, PostService):
    """Mastodon REST client.

    base_url is the instance root, e.g. https://mastodon.social. The bearer
    token comes from the keyring or FEDIRANT_TOKEN (see config.py).
    """

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session: Session = requests.Session()
        self.account_id = ""
        self.token: str | None = None
        if token:
            self.set_token(token)

    # --- helpers ---
    def set_token(self, token: str) -> None:
        self.token = token
        self.session.headers.update({"Authorization": f"Bearer {token}"})
        preview = (token[:6] + "...") if len(token) > 6 else "***"
        logger.info("Set API token preview=%s", preview)

    def _get(self, path: str, params: Dict[str, Any] | None = None) -> Any:
        return self._request("GET", path, params=params)

    def _post(self, path: str, data: Dict[str, Any] | None = None) -> Any:
        return self._request("POST", path, data=data)

    def _put(self, path: str, data: Dict[str, Any] | None = None) -> Any:
        return self._request("PUT", path, data=data)

    def _patch(self, path: str, data: Dict[str, Any] | None = None) -> Any:
        return self._request("PATCH", path, data=data)

    def _delete(self, path: str) -> Any:
        return self._request("DELETE", path)

    def _request(self, method: str, path: str, params: Dict[str, Any] | None = None, data: Dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}/api/v1/{path.lstrip('/')}"
        try:
            resp = self.session.request(method, url, params=params, data=data, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise APIError(f"request to {path}: {e}") from e

        if resp.status_code < 200 or resp.status_code >= 300:
            body = (resp.text or "")[:200]
            logger.info("%s %s returned %s", method, path, resp.status_code)
            raise APIError(f"API {method} {path} returned {resp.status_code}: {body}", status=resp.status_code)

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise APIError(f"parsing response from {path}: {e}") from e

    # --- timelines ---
    def fetch_by_tag(self, tag: str, limit: int = PAGE_SIZE) -> List[Post]:
        return self.fetch_by_tag_page(tag, limit, "")

    def fetch_by_tag_page(self, tag: str, limit: int, before_id: str = "") -> List[Post]:
        return self._timeline(f"timelines/tag/{quote(tag, safe='')}", limit, before_id)

    def fetch_home_page(self, limit: int, before_id: str = "") -> List[Post]:
        return self._timeline("timelines/home", limit, before_id)

    def fetch_public_page(self, limit: int, before_id: str = "") -> List[Post]:
        return self._timeline("timelines/public", limit, before_id)

    def fetch_trending_page(self, limit: int, before_id: str = "") -> List[Post]:
        """Trending statuses, falling back to the public timeline.

        Trending is a snapshot; an older page comes from the public timeline.
        """
        if limit <= 0:
            limit = PAGE_SIZE
        if not before_id:
            try:
                posts = self._timeline("trends/statuses", limit, "")
            except APIError:
                logger.info("trends/statuses unavailable, using public timeline")
                posts = []
            if posts:
                return posts
            return self.fetch_public_page(limit, "")
        posts = self.fetch_public_page(limit, before_id)
        if not posts:
            return self.fetch_public_page(limit, "")
        return posts

    def fetch_thread(self, post_id: str) -> Tuple[List[Post], List[Post]]:
        data = self._get(f"statuses/{post_id}/context") or {}
        ancestors = [self._convert_status(s) for s in data.get("ancestors") or []]
        descendants = [self._convert_status(s) for s in data.get("descendants") or []]
        return ancestors, descendants

    def _timeline(self, path: str, limit: int, before_id: str) -> List[Post]:
        params: Dict[str, Any] = {"limit": limit}
        if before_id:
            params["max_id"] = before_id
        data = self._get(path, params=params) or []
        return [self._convert_status(s) for s in data]

    # --- accounts ---
    def current_account_id(self) -> str:
        if self.account_id:
            return self.account_id
        return self.current_profile().id

    def current_profile(self) -> Profile:
        data = self._get("accounts/verify_credentials") or {}
        profile = self._convert_account(data)
        self.account_id = profile.id
        return profile

    def update_profile(self, display_name: str, bio: str) -> None:
        self._patch(
            "accounts/update_credentials",
            data={"display_name": display_name.strip(), "note": bio.strip()},
        )

    def profile_by_id(self, account_id: str) -> Profile:
        account_id = _require_id(account_id)
        return self._convert_account(self._get(f"accounts/{account_id}") or {})

    def posts_by_account(self, account_id: str, limit: int = PAGE_SIZE, before_id: str = "") -> List[Post]:
        account_id = _require_id(account_id)
        return self._timeline(f"accounts/{account_id}/statuses", limit or PAGE_SIZE, before_id.strip())

    def follow_user(self, account_id: str) -> None:
        self._post(f"accounts/{_require_id(account_id)}/follow")

    def unfollow_user(self, account_id: str) -> None:
        self._post(f"accounts/{_require_id(account_id)}/unfollow")

    def lookup_following(self, account_ids: Iterable[str]) -> Dict[str, bool]:
        ids: List[str] = []
        for raw in account_ids:
            aid = (raw or "").strip()
            if aid and aid not in ids:
                ids.append(aid)
        if not ids:
            return {}
        data = self._get("accounts/relationships", params={"id[]": ids}) or []
        return {sanitize_for_terminal(str(r.get("id"))): bool(r.get("following")) for r in data}

    def block_user(self, account_id: str) -> None:
        self._post(f"accounts/{_require_id(account_id)}/block")

    def unblock_user(self, account_id: str) -> None:
        self._post(f"accounts/{_require_id(account_id)}/unblock")

    def list_blocked_users(self, limit: int = 80) -> List[BlockedUser]:
        data = self._get("blocks", params={"limit": limit if limit > 0 else 40}) or []
        return [
            BlockedUser(
                account_id=sanitize_for_terminal(str(u.get("id") or "")),
                handle=sanitize_for_terminal(u.get("acct")),
                display_name=sanitize_for_terminal(u.get("display_name")),
            )
            for u in data
        ]

    # --- posts ---
    def post(self, content: str, hashtag: str) -> Post:
        status = with_hashtag(content, hashtag)
        return self._convert_status(self._post("statuses", data={"status": status, "visibility": "public"}))

    def edit(self, post_id: str, content: str, hashtag: str) -> Post:
        status = with_hashtag(content, hashtag)
        return self._convert_status(self._put(f"statuses/{post_id}", data={"status": status}))

    def delete(self, post_id: str) -> None:
        self._delete(f"statuses/{post_id}")

    def like(self, post_id: str) -> None:
        self._post(f"statuses/{post_id}/favourite")

    def unlike(self, post_id: str) -> None:
        self._post(f"statuses/{post_id}/unfavourite")

    def reply(self, parent_id: str, content: str, hashtag: str) -> Post:
        status = with_hashtag(content, hashtag)
        data = {"status": status, "in_reply_to_id": parent_id, "visibility": "public"}
        return self._convert_status(self._post("statuses", data=data))

    # --- conversion helpers ---
    def _convert_status(self, s: Dict[str, Any] | None) -> Post:
        s = s or {}
        account = s.get("account") or {}
        author = sanitize_for_terminal(account.get("display_name")) or sanitize_for_terminal(account.get("acct"))
        reply_to = s.get("in_reply_to_id")
        account_id = str(account.get("id") or "")
        return Post(
            id=str(s.get("id") or ""),
            account_id=account_id,
            author=author,
            handle=sanitize_for_terminal(account.get("acct")),
            content=strip_html(s.get("content")),
            timestamp=parse_timestamp(s.get("created_at")),
            url=sanitize_for_terminal(s.get("url")),
            liked_by_user=bool(s.get("favourited")),
            likes=int(s.get("favourites_count") or 0),
            comments=int(s.get("replies_count") or 0),
            in_reply_to_id=str(reply_to) if reply_to is not None else "",
            attachments=[self._convert_media(m) for m in s.get("media_attachments") or []],
            is_own=bool(self.account_id) and account_id == self.account_id,
        )

    def _convert_media(self, m: Dict[str, Any]) -> MediaAttachment:
        original = (m.get("meta") or {}).get("original") or {}
        return MediaAttachment(
            id=sanitize_for_terminal(str(m.get("id") or "")),
            kind=sanitize_for_terminal(m.get("type")),
            url=sanitize_for_terminal(m.get("url")),
            preview_url=sanitize_for_terminal(m.get("preview_url")),
            description=sanitize_for_terminal((m.get("description") or "").strip()),
            width=int(original.get("width") or 0),
            height=int(original.get("height") or 0),
        )

    def _convert_account(self, a: Dict[str, Any]) -> Profile:
        return Profile(
            id=sanitize_for_terminal(str(a.get("id") or "")),
            handle=sanitize_for_terminal(a.get("acct")),
            display_name=sanitize_for_terminal(a.get("display_name")),
            bio=strip_html(a.get("note")),
            avatar_url=sanitize_for_terminal(a.get("avatar_static") or a.get("avatar")),
            posts_count=int(a.get("statuses_count") or 0),
            followers=int(a.get("followers_count") or 0),
            following=int(a.get("following_count") or 0),
        )


def _require_id(account_id: str) -> str:
    account_id = (account_id or "").strip()
    if not account_id:
        raise APIError("invalid account id")
    return account_id
