"""Rendering of the engine state into rich renderables.

Nothing here mutates state; the host calls ``render_screen`` after every
update and hands the result to a single ``Static`` widget.
"""

from datetime import datetime, timezone
from typing import List, Optional

from rich import box
from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .keys import DETAIL_HINTS, FEED_HINTS, PROFILE_HINTS, full_hints, short_hints
from .media import avatar_key, base_key, preview_targets, single_key, single_target
from .models import FeedItem, FeedSource, ItemStatus, Post
from .pagination import card_widths, viewport_height, visible_spans
from .state import AppState
from .text import card_layout, split_content_and_tags, split_handle, summarize, wrap_text
from .visibility import is_marked_hidden

ACCENT = "#4a9eff"
MUTED = "#888888"
ERROR = "#ff6b6b"
LIKED = "#ff5f87"
SELECTED = "on #1c2a3a"
LOADING_MORE = "⏳ Loading older posts..."


def format_time_ago(dt: Optional[datetime]) -> str:
    """Format datetime as 'time ago' string."""
    if dt is None:
        return "just now"
    now = datetime.now(dt.tzinfo) if dt.tzinfo else datetime.now(timezone.utc).replace(tzinfo=None)
    total_seconds = int((now - dt).total_seconds())
    if total_seconds < 10:
        return "just now"
    if total_seconds < 60:
        return f"{total_seconds}s ago"
    minutes = total_seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def _status_badge(item: FeedItem) -> Text:
    if item.status == ItemStatus.PENDING_CREATE:
        return Text(" posting…", style=MUTED)
    if item.status == ItemStatus.PENDING_UPDATE:
        return Text(" saving…", style=MUTED)
    if item.status == ItemStatus.PENDING_DELETE:
        return Text(" deleting…", style=MUTED)
    if item.status == ItemStatus.FAILED:
        return Text(f" failed: {item.error or 'unknown error'}", style=ERROR)
    return Text("")


def _author_line(post: Post, state: AppState) -> Text:
    local, domain = split_handle(post.handle)
    line = Text()
    line.append(post.author or local or "unknown", style=f"bold {ACCENT}")
    if local:
        line.append(f" @{local}", style=MUTED)
    if domain:
        line.append(f"@{domain}", style="dim")
    line.append(f" · {format_time_ago(post.timestamp)}", style=MUTED)
    if post.is_own:
        line.append(" · you", style="italic")
    elif state.relationships.is_following(post.account_id):
        line.append(" · following", style="green")
    return line


def _meta_line(post: Post) -> Text:
    line = Text()
    heart = "♥" if post.liked_by_user else "♡"
    line.append(f"{heart} {post.likes}", style=LIKED if post.liked_by_user else MUTED)
    line.append(f"   💬 {post.comments}", style=MUTED)
    if post.is_reply:
        line.append("   ↩ reply", style="dim")
    return line


def _hscroll(line: str, offset: int) -> str:
    return line[offset:] if offset > 0 else line


def render_card(item: FeedItem, state: AppState, selected: bool) -> Panel:
    post = item.post
    _, body_width = card_widths(state)
    layout = card_layout(post, body_width)
    rows: List[Text] = []
    header = _author_line(post, state)
    header.append_text(_status_badge(item))
    if state.moderation.show_hidden and is_marked_hidden(post, state.moderation):
        header.append(" [hidden]", style="yellow")
    rows.append(header)
    for line in layout.body:
        rows.append(Text(_hscroll(line, state.ui.h_scroll)))
    rows.append(_meta_line(post))
    if layout.tags:
        rows.append(Text(""))
        rows.append(Text(" ".join(layout.tags), style=ACCENT))
        rows.append(Text(""))
    if layout.has_media:
        count = len(post.attachments)
        rows.append(Text(f"🖼 {count} attachment{'s' if count != 1 else ''}", style=MUTED))
    border = ACCENT if selected else "#444444"
    return Panel(Group(*rows), box=box.ROUNDED, border_style=border, padding=(0, 1))


def _preview_block(post: Optional[Post], state: AppState, single: bool = False) -> RenderableType:
    media = state.media
    if post is None or not post.attachments:
        return Text("")
    if not media.show_preview:
        return Text("media preview off (i)", style=MUTED)
    blocks: List[RenderableType] = []
    target = single_target(post.attachments) if single else None
    if target is not None:
        key = single_key(target.url)
        if media.previews.get(key):
            blocks.append(Text.from_ansi(media.previews[key]))
            if target.description:
                blocks.append(Text(summarize(target.description, 56), style="dim"))
            return Group(*blocks)
    for target in preview_targets(post.attachments):
        key = base_key(target.url)
        if key in media.loading:
            blocks.append(Text("loading preview…", style=MUTED))
        elif media.previews.get(key):
            blocks.append(Text.from_ansi(media.previews[key]))
        else:
            blocks.append(Text("[no preview]", style=MUTED))
        if target.description:
            blocks.append(Text(summarize(target.description, 34), style="dim"))
    if not blocks:
        blocks.append(Text("no previewable media (I opens it)", style=MUTED))
    return Group(*blocks)


def tab_label(state: AppState, source: FeedSource) -> str:
    if source == FeedSource.PRIMARY:
        return "#" + state.feed.default_hashtag
    if source == FeedSource.CUSTOM:
        return "#" + state.feed.hashtag
    return source.value


def _tabs_line(state: AppState, labels) -> Text:
    feed = state.feed
    line = Text()
    for source, label in labels:
        style = f"bold reverse {ACCENT}" if source == feed.source else MUTED
        line.append(f" {label} ", style=style)
        line.append(" ")
    return line


def _status_line(state: AppState) -> Text:
    feed = state.feed
    if feed.error:
        return Text(f"⚠ {feed.error}", style=ERROR)
    if feed.notice:
        return Text(feed.notice, style="italic")
    if feed.page.loading:
        return Text("Loading…", style=MUTED)
    if feed.page.loading_more:
        return Text(LOADING_MORE, style=MUTED)
    return Text("")


def _confirm_line(state: AppState) -> Optional[Text]:
    if state.detail.confirm_delete:
        return Text("Delete this post? (y/n)", style=f"bold {ERROR}")
    mod = state.moderation
    if mod.confirm_block:
        return Text(f"Block @{mod.block_handle}? Their posts will be hidden. (y/n)", style=f"bold {ERROR}")
    rel = state.relationships
    if rel.confirm_follow:
        verb = "Follow" if rel.follow_target else "Unfollow"
        return Text(f"{verb} @{rel.follow_handle}? (y/n)", style="bold yellow")
    return None


def render_feed(state: AppState) -> RenderableType:
    feed = state.feed
    ui = state.ui
    spans = visible_spans(state)
    if not spans:
        if feed.page.loading:
            return Text("Loading posts…", style=MUTED)
        return Text("No posts here yet. r refreshes, t switches feeds.", style=MUTED)
    start = min(max(ui.start_index, 0), len(spans) - 1)
    height = viewport_height(state)
    top = spans[start].top
    cards: List[RenderableType] = []
    for span in spans[start:]:
        if cards and span.bottom - top >= height:
            break
        item = feed.items[span.idx]
        cards.append(render_card(item, state, span.idx == feed.cursor))
    if feed.page.loading_more:
        cards.append(Text(LOADING_MORE, style=MUTED))
    column = Group(*cards)
    if not state.media.show_preview:
        return column
    selected = feed.items[feed.cursor].post if 0 <= feed.cursor < len(feed.items) else None
    grid = Table.grid(expand=True)
    grid.add_column(ratio=1)
    grid.add_column(width=36)
    grid.add_row(column, Panel(_preview_block(selected, state), title="media", border_style="#444444"))
    return grid


def _post_lines(post: Post, state: AppState, width: int) -> List[Text]:
    content, tags = split_content_and_tags(post.content)
    if not content.strip() and post.attachments:
        content = "(media post)"
    lines = [_author_line(post, state), Text("")]
    for line in wrap_text(content, width):
        lines.append(Text(_hscroll(line, state.ui.h_scroll)))
    if tags:
        lines.append(Text(""))
        lines.append(Text(" ".join(tags), style=ACCENT))
    lines.append(Text(""))
    lines.append(_meta_line(post))
    if post.url:
        lines.append(Text(post.url, style="dim underline"))
    return lines


def render_detail(state: AppState) -> RenderableType:
    d = state.detail
    feed = state.feed
    focused = d.focused
    if focused is None and 0 <= feed.cursor < len(feed.items):
        focused = feed.items[feed.cursor].post
    if focused is None:
        return Text("Nothing selected.", style=MUTED)
    parts: List[RenderableType] = []
    for a in d.ancestors[-3:]:
        parts.append(Text(f"↑ @{a.handle}: {summarize(split_content_and_tags(a.content)[0], 70)}", style=MUTED))
    lines = _post_lines(focused, state, 66)
    if d.cursor == 0 and d.scroll_line > 0:
        lines = lines[min(d.scroll_line, max(len(lines) - 1, 0)):]
    border = ACCENT if d.cursor == 0 else "#444444"
    main = Panel(Group(*lines), box=box.HEAVY if d.cursor == 0 else box.ROUNDED, border_style=border)
    if focused.attachments:
        grid = Table.grid(expand=True)
        grid.add_column(ratio=1)
        grid.add_column(width=60)
        grid.add_row(main, _preview_block(focused, state, single=True))
        parts.append(grid)
    else:
        parts.append(main)

    header = Text(f"Replies ({len(d.reply_all)})", style="bold")
    if d.loading_replies:
        header.append("  loading…", style=MUTED)
    parts.append(header)
    if not d.loading_replies and not d.reply_all:
        parts.append(Text("No replies yet. c to reply.", style=MUTED))
    slots = max(max(state.ui.height - 30, 20) // 5, 4)
    replies = d.replies
    for i, reply in enumerate(replies[d.start:d.start + slots], start=d.start + 1):
        indent = "    " if reply.in_reply_to_id and reply.in_reply_to_id != focused.id else ""
        row = Text(indent)
        row.append_text(_author_line(reply, state))
        body = summarize(split_content_and_tags(reply.content)[0] or "(media post)", 90)
        row.append("\n" + indent + body)
        row.append("\n" + indent)
        row.append_text(_meta_line(reply))
        style = SELECTED if i == d.cursor else ""
        parts.append(Panel(row, box=box.SIMPLE, style=style, padding=(0, 1)))
    if d.has_more_replies:
        parts.append(Text(f"… {len(d.reply_all) - len(replies)} more (m)", style=MUTED))
    return Group(*parts)


def render_profile(state: AppState) -> RenderableType:
    p = state.profile
    if p.loading:
        return Text("Loading profile…", style=MUTED)
    if p.error:
        return Text(f"Profile error: {p.error}", style=ERROR)
    prof = p.profile
    card = Text()
    card.append(prof.display_name or prof.handle, style=f"bold {ACCENT}")
    card.append(f"  @{prof.handle}", style=MUTED)
    if p.is_own:
        card.append("  (you)", style="italic")
    elif state.relationships.is_following(prof.id):
        card.append("  ✓ following", style="green")
    card.append(f"\n{prof.posts_count} posts · {prof.followers} followers · {prof.following} following\n\n")
    card.append(prof.bio or "", style="")
    avatar = state.media.previews.get(avatar_key(prof.avatar_url), "") if prof.avatar_url else ""
    if avatar:
        top = Table.grid(padding=(0, 2))
        top.add_column(width=26)
        top.add_column(ratio=1)
        top.add_row(Text.from_ansi(avatar), card)
        head: RenderableType = top
    else:
        head = card
    parts: List[RenderableType] = [
        Panel(head, border_style=ACCENT if p.cursor == 0 else "#444444", box=box.ROUNDED)
    ]
    slots = max(max(state.ui.height - 30, 20) // 5, 4)
    for i, post in enumerate(p.posts[p.start:p.start + slots], start=p.start + 1):
        body = summarize(split_content_and_tags(post.content)[0] or "(media post)", 90)
        row = Text(format_time_ago(post.timestamp), style=MUTED)
        row.append("\n" + body, style="")
        row.append("\n")
        row.append_text(_meta_line(post))
        parts.append(Panel(row, box=box.SIMPLE, style=SELECTED if i == p.cursor else "", padding=(0, 1)))
    if not p.posts:
        parts.append(Text("No posts.", style=MUTED))
    return Group(*parts)


def render_blocked(state: AppState) -> RenderableType:
    mod = state.moderation
    rows: List[RenderableType] = [Text("Blocked users", style="bold")]
    if mod.loading_blocked:
        rows.append(Text("Loading…", style=MUTED))
    if mod.blocked_error:
        rows.append(Text(f"⚠ {mod.blocked_error}", style=ERROR))
    if not mod.loading_blocked and not mod.blocked_users:
        rows.append(Text("Nobody is blocked.", style=MUTED))
    for i, user in enumerate(mod.blocked_users):
        marker = "›" if i == mod.blocked_cursor else " "
        line = Text(f"{marker} {user.display_name or user.handle}")
        line.append(f"  @{user.handle}", style=MUTED)
        if i == mod.blocked_cursor:
            line.stylize("bold")
        rows.append(line)
    if mod.confirm_unblock and mod.unblock_target is not None:
        rows.append(Text(f"Unblock @{mod.unblock_target.handle}? (y/n)", style="bold yellow"))
    rows.append(Text("j/k move • u unblock • esc close", style=MUTED))
    return Panel(Group(*rows), border_style=ACCENT, box=box.ROUNDED)


def render_hints(state: AppState, keymap) -> RenderableType:
    table = Table(box=box.SIMPLE, show_header=False, padding=(0, 2))
    table.add_column(style=f"bold {ACCENT}")
    table.add_column()
    for key, desc in full_hints(keymap):
        table.add_row(key, desc)
    return Panel(table, title="keys", subtitle="? or esc closes", border_style=ACCENT)


def render_screen(model) -> RenderableType:
    """The whole screen for the current state of ``model``."""
    state: AppState = model.state
    keymap = model.keys
    title = Text("fedirant ", style=f"bold {ACCENT}")
    title.append_text(_tabs_line(state, [(src, tab_label(state, src)) for src in model.tab_order()]))
    parts: List[RenderableType] = [title]

    if state.ui.show_all_hints:
        parts.append(render_hints(state, keymap))
        return Group(*parts)
    if state.moderation.show_blocked:
        body = render_blocked(state)
        hints = ""
    elif state.profile.show_profile:
        body = render_profile(state)
        hints = short_hints(keymap, PROFILE_HINTS)
    elif state.detail.show_detail:
        body = render_detail(state)
        hints = short_hints(keymap, DETAIL_HINTS)
    else:
        body = render_feed(state)
        hints = short_hints(keymap, FEED_HINTS)

    parts.append(_status_line(state))
    parts.append(body)
    if state.ui.hashtag_input:
        prompt = Text("hashtag: #", style="bold")
        prompt.append(state.ui.hashtag_buffer + "▏")
        prompt.append("   enter apply • esc cancel", style=MUTED)
        parts.append(prompt)
    confirm = _confirm_line(state)
    if confirm is not None:
        parts.append(confirm)
    if hints:
        parts.append(Text(hints, style=MUTED))
    return Group(*parts)
