"""Rebuild threaded conversations from a flat comment list."""

from __future__ import annotations

from typing import TYPE_CHECKING

from reviewdeck.models import CommentNode

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence

    from reviewdeck.models import Comment


def _effective_parents(comments: Sequence[Comment]) -> list[int | None]:
    """Map each comment (by index) to the index of its parent, or None for roots.

    Unknown parents and self-references become roots. When parent links form a
    cycle, the member that appears first in *comments* is made a root.
    """
    index_by_id: dict[str, int] = {}
    for i, comment in enumerate(comments):
        index_by_id.setdefault(comment.id, i)

    parents: list[int | None] = []
    for i, comment in enumerate(comments):
        parent = index_by_id.get(comment.parent_id) if comment.parent_id is not None else None
        parents.append(None if parent == i else parent)

    settled: set[int] = set()
    for start in range(len(comments)):
        path: list[int] = []
        on_path: set[int] = set()
        node: int | None = start
        while node is not None and node not in settled:
            if node in on_path:
                cycle = path[path.index(node) :]
                parents[min(cycle)] = None
                break
            path.append(node)
            on_path.add(node)
            node = parents[node]
        settled.update(path)
    return parents


def build_comment_tree(comments: Sequence[Comment]) -> list[CommentNode]:
    """Return top-level comments with their reply subtrees.

    Siblings keep their order from *comments*.  A comment whose parent is not
    in the list is returned as a top-level comment.  The input is not modified
    and every call builds fresh nodes.
    """
    parents = _effective_parents(comments)
    nodes = [CommentNode(comment=comment) for comment in comments]

    roots: list[CommentNode] = []
    for i, parent in enumerate(parents):
        if parent is None:
            roots.append(nodes[i])
        else:
            nodes[parent].replies.append(nodes[i])
    return roots


def flatten_tree(roots: Sequence[CommentNode]) -> Iterator[tuple[int, Comment]]:
    """Yield ``(depth, comment)`` in display order (depth-first, pre-order)."""
    stack: list[tuple[int, CommentNode]] = [(0, node) for node in reversed(roots)]
    while stack:
        depth, node = stack.pop()
        yield depth, node.comment
        stack.extend((depth + 1, child) for child in reversed(node.replies))


def count_comments(roots: Sequence[CommentNode]) -> int:
    return sum(1 for _ in flatten_tree(roots))
