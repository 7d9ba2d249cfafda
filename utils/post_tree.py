from collections import defaultdict, deque
from typing import Dict, List


class PostCycleError(Exception):
    """A post is (transitively) its own ancestor. The stored tree is corrupt."""

    def __init__(self, post_id: str):
        super().__init__(f"Reply cycle detected at post {post_id}")
        self.post_id = post_id


def children_by_parent(posts: Dict[str, dict]) -> Dict[str, List[str]]:
    children = defaultdict(list)
    for post_id, post in posts.items():
        parent_id = post.get("parentId") if isinstance(post, dict) else None
        if parent_id:
            children[parent_id].append(post_id)
    return children


def collect_descendants(posts: Dict[str, dict], root_id: str) -> List[str]:
    """Return ``root_id`` followed by every post that transitively replies to it.

    ``posts`` maps post id to record for a single thread. Expansion is
    breadth-first over the parent -> children map. Each post has a single
    parent, so meeting a post twice means the parent links form a cycle;
    that raises ``PostCycleError`` instead of returning a partial set.
    """
    children = children_by_parent(posts)
    collected = [root_id]
    visited = {root_id}
    queue = deque([root_id])
    while queue:
        current = queue.popleft()
        for child_id in children.get(current, ()):
            if child_id in visited:
                raise PostCycleError(child_id)
            visited.add(child_id)
            collected.append(child_id)
            queue.append(child_id)
    return collected


def nest_posts(posts: list) -> list:
    """Attach each ``PostResponse`` to its parent's ``replies``; return the top level.

    Posts whose parent is missing, or whose parent chain loops back to
    themselves, are treated as top level. Input order is preserved among
    siblings.
    """
    by_id = {post.id: post for post in posts}
    for post in posts:
        post.replies = []
    tree = []
    for post in posts:
        parent = by_id.get(post.parent_id) if post.parent_id else None
        if parent is not None and not _loops_back(by_id, parent, post.id):
            parent.replies.append(post)
        else:
            tree.append(post)
    return tree


def _loops_back(by_id: dict, start, post_id: str) -> bool:
    seen = set()
    node = start
    while node is not None:
        if node.id == post_id or node.id in seen:
            return True
        seen.add(node.id)
        node = by_id.get(node.parent_id) if node.parent_id else None
    return False
