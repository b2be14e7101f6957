"""Category hierarchy helpers.

Everything here works on an explicit snapshot of category records (as
returned by the document store) and never touches the store itself.
Parent/child links are followed through a single bounded walk that
keeps a visited set, so a malformed hierarchy containing a cycle still
terminates.

`MAX_TREE_DEPTH` is a safety cap rather than a product limit: walks stop
after that many levels even when the hierarchy goes deeper.
"""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .errors import NotFoundError, ValidationError

MAX_TREE_DEPTH = 10
MAX_KEY_LENGTH = 50

_WHITESPACE = re.compile(r"\s+")
# ASCII word characters plus hiragana, katakana and CJK ideographs
_KEY_DISALLOWED = re.compile(r"[^\w\u3040-\u309F\u30A0-\u30FF\u4E00-\u9FAF]", re.ASCII)


def normalize_category_key(name: str) -> str:
    """Derive the storage key for a category name.

    Lowercases, turns whitespace runs into `_`, drops everything outside
    the allowed character set and truncates to 50 characters. Raises
    `ValidationError` when nothing usable is left.
    """
    if name is None or not name.strip():
        raise ValidationError("category name is required")
    key = _WHITESPACE.sub("_", name.strip().lower())
    key = _KEY_DISALLOWED.sub("", key)[:MAX_KEY_LENGTH]
    if not key.strip("_"):
        raise ValidationError(f"category name has no usable characters: {name!r}")
    return key


class CategoryGraph:
    """Immutable parent/child index over a snapshot of categories."""

    def __init__(self, categories: Iterable[Mapping[str, Any]]):
        self.nodes: Dict[str, Mapping[str, Any]] = {}
        children: Dict[str, List[str]] = defaultdict(list)
        ordered = sorted(categories, key=lambda c: (c.get("display_order") or 0, str(c["id"])))
        for cat in ordered:
            self.nodes[cat["id"]] = cat
        for cat in ordered:
            parent = cat.get("parent_id")
            if parent is not None:
                children[parent].append(cat["id"])
        self._children = dict(children)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self.nodes

    def node(self, category_id: str) -> Mapping[str, Any]:
        try:
            return self.nodes[category_id]
        except KeyError:
            raise NotFoundError(f"category not found: {category_id}") from None

    def children_of(self, category_id: str) -> List[str]:
        return list(self._children.get(category_id, ()))

    def parent_of(self, category_id: str) -> List[str]:
        parent = self.nodes[category_id].get("parent_id") if category_id in self.nodes else None
        # a dangling parent reference ends the walk
        return [parent] if parent is not None and parent in self.nodes else []

    def walk(self, start: str, step: Callable[[str], List[str]],
             max_depth: int = MAX_TREE_DEPTH) -> List[Tuple[str, int]]:
        """Breadth-first walk from `start` following `step`.

        Returns `(id, depth)` pairs in visiting order, excluding `start`.
        No id is visited twice and the walk stops after `max_depth` levels.
        """
        self.node(start)
        visited: Set[str] = {start}
        frontier = [start]
        found: List[Tuple[str, int]] = []
        depth = 0
        while frontier and depth < max_depth:
            depth += 1
            nxt = []
            for current in frontier:
                for neighbour in step(current):
                    if neighbour in visited:
                        continue
                    visited.add(neighbour)
                    nxt.append(neighbour)
                    found.append((neighbour, depth))
            frontier = nxt
        return found

    def descendants(self, category_id: str, max_depth: int = MAX_TREE_DEPTH) -> Set[str]:
        return {cid for cid, _depth in self.walk(category_id, self.children_of, max_depth)}

    def ancestors(self, category_id: str, max_depth: int = MAX_TREE_DEPTH) -> List[str]:
        """Ancestor ids, nearest parent first."""
        return [cid for cid, _depth in self.walk(category_id, self.parent_of, max_depth)]

    def path(self, category_id: str, max_depth: int = MAX_TREE_DEPTH) -> List[Mapping[str, Any]]:
        """Records from the topmost reachable ancestor down to `category_id`."""
        chain = [category_id] + self.ancestors(category_id, max_depth)
        return [self.nodes[cid] for cid in reversed(chain)]

    def would_create_cycle(self, category_id: str, new_parent_id: Optional[str]) -> bool:
        """Return True if making `new_parent_id` the parent of `category_id` closes a loop.

        Unlike the display walks this one is not depth capped: the whole
        ancestor chain of `new_parent_id` is followed, the visited set
        alone guaranteeing termination.
        """
        if new_parent_id is None:
            return False
        if new_parent_id == category_id:
            return True
        self.node(new_parent_id)
        return category_id in self.ancestors(new_parent_id, max_depth=len(self.nodes))


def get_all_descendants(categories: Iterable[Mapping[str, Any]], category_id: str) -> Set[str]:
    """Ids of every category below `category_id` in the snapshot."""
    return CategoryGraph(categories).descendants(category_id)


def resolve_path(categories: Iterable[Mapping[str, Any]], category_id: str) -> List[Mapping[str, Any]]:
    """Root-to-node chain of category records ending at `category_id`."""
    return CategoryGraph(categories).path(category_id)


def breadcrumb(path: Iterable[Mapping[str, Any]]) -> str:
    return " / ".join(p.get("category_name", str(p.get("id"))) for p in path)
