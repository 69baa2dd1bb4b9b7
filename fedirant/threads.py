from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Tuple

from .models import LOCAL_REPLY_PREFIX, Post


@dataclass
class ThreadEntry:
    ancestors: List[Post] = field(default_factory=list)  # root first, parent last
    descendants: List[Post] = field(default_factory=list)  # assembled order


class ThreadCache:
    """Previously fetched threads keyed by the id of the post they were opened on.

    Entries are only ever overwritten or dropped explicitly (refresh).
    """

    def __init__(self):
        self._entries: Dict[str, ThreadEntry] = {}

    def get(self, root_id: str) -> Optional[ThreadEntry]:
        return self._entries.get(root_id)

    def put(self, root_id: str, ancestors: List[Post], descendants: List[Post]) -> None:
        self._entries[root_id] = ThreadEntry(
            ancestors=[replace(p) for p in ancestors],
            descendants=[replace(p) for p in descendants],
        )

    def drop(self, root_id: str) -> None:
        self._entries.pop(root_id, None)

    def entries(self) -> Iterable[ThreadEntry]:
        return self._entries.values()

    def __contains__(self, root_id: str) -> bool:
        return root_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        return isinstance(other, ThreadCache) and self._entries == other._entries


@dataclass
class _ReplyNode:
    post: Post
    children: List["_ReplyNode"] = field(default_factory=list)


def organize_thread_replies(focused_id: str, descendants: List[Post]) -> List[Post]:
    """Flatten descendants into display order.

    First-level replies to ``focused_id`` come in input order, each followed
    by its own direct replies. Deeper replies and anything whose parent never
    resolved are appended afterwards in input order.
    """
    nodes = {p.id: _ReplyNode(p) for p in descendants}
    roots = [nodes[p.id] for p in descendants if p.in_reply_to_id == focused_id]
    for root in roots:
        root.children = [nodes[p.id] for p in descendants if p.in_reply_to_id == root.post.id]

    flat: List[Post] = []
    placed = set()
    for root in roots:
        for node in [root] + root.children:
            if node.post.id in placed:
                continue
            flat.append(node.post)
            placed.add(node.post.id)

    for p in descendants:
        if p.id not in placed:
            flat.append(p)
            placed.add(p.id)
    return flat


def belongs_to_thread(
    parent_id: str,
    root_id: str,
    focused: Optional[Post],
    replies: List[Post],
    ancestors: List[Post],
    cache: ThreadCache,
) -> bool:
    if not parent_id:
        return False
    if parent_id == root_id:
        return True
    if focused is not None and parent_id == focused.id:
        return True
    if any(r.id == parent_id for r in replies):
        return True
    if any(a.id == parent_id for a in ancestors):
        return True
    entry = cache.get(root_id)
    if entry is not None:
        if any(r.id == parent_id for r in entry.descendants):
            return True
        if any(a.id == parent_id for a in entry.ancestors):
            return True
    return False


def reconcile_reply(replies: List[Post], local_id: str, server: Post) -> Tuple[List[Post], bool]:
    """Swap the server's copy of a reply into ``replies``.

    Matches the server id, then the local id, then a local reply under the
    same parent with identical trimmed content. Unmatched replies are
    appended. Returns the new list and whether a match was found.
    """
    out = list(replies)
    for i, r in enumerate(out):
        if r.id == server.id:
            out[i] = replace(server)
            return out, True
        if local_id.strip() and r.id == local_id:
            out[i] = replace(server)
            return out, True
        if (
            r.id.startswith(LOCAL_REPLY_PREFIX)
            and r.in_reply_to_id == server.in_reply_to_id
            and r.content.strip() == server.content.strip()
        ):
            out[i] = replace(server)
            return out, True
    out.append(replace(server))
    return out, False
