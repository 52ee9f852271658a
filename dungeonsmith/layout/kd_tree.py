"""KD-tree over placed room rectangles for fast overlap rejection.

Nodes are keyed by the doubled center of their rectangle and split alternately
on X and Y by depth. Centers alone cannot bound how far a rectangle reaches, so
every node also tracks the bounding box of its whole subtree; range queries
prune any subtree whose box cannot overlap the query.

Balancing
---------
Insertion descends by center and attaches a leaf. When the new leaf lands
deeper than ``2 * ceil(log2(n + 1)) + 2`` the tree is rebuilt around medians,
which costs O(n log n) and happens at most once per O(n) inserts, so inserts
stay amortized O(log n) for the spatially spread rectangles a layout produces.

Removal tombstones the node: dead nodes keep routing queries but never match.
Once dead nodes outnumber live ones the tree is compacted by the same
rebuild. Removals during backtracking come in LIFO order, so compaction is
rare in practice.
"""

import logging

from dataclasses import dataclass
from typing import Hashable, Iterable, Iterator

import numpy as np

from dungeonsmith.layout.geometry import Rect

console_logger = logging.getLogger(__name__)


@dataclass(eq=False)
class _Node:
    rect: Rect
    key: Hashable
    axis: int
    """0 splits on X, 1 splits on Y."""

    split: int
    """Doubled center of ``rect`` on ``axis``."""

    bbox: Rect
    """Bounding box of every rect in this subtree, dead ones included."""

    left: "_Node | None" = None
    right: "_Node | None" = None
    alive: bool = True


class RectKDTree:
    """Spatial index answering "does this rectangle overlap anything?".

    Overlap is strict: rectangles that only share an edge or a corner do not
    overlap.
    """

    def __init__(self, rects: Iterable[Rect] = ()):
        self._root: _Node | None = None
        self._live = 0
        self._dead = 0
        self.rebuilds = 0
        """Number of full rebuilds so far (balancing and compaction)."""

        entries = [(rect, None) for rect in rects]
        if entries:
            self._root = self._build(entries, axis=0)
            self._live = len(entries)

    def __len__(self) -> int:
        return self._live

    def __iter__(self) -> Iterator[Rect]:
        for rect, _ in self.entries():
            yield rect

    def __contains__(self, rect: Rect) -> bool:
        return self._find(rect, key=None) is not None

    def rects(self) -> list[Rect]:
        return list(self)

    def entries(self) -> list[tuple[Rect, Hashable]]:
        """Live (rect, key) pairs in tree order."""
        result: list[tuple[Rect, Hashable]] = []
        stack = [self._root] if self._root else []
        while stack:
            node = stack.pop()
            if node.alive:
                result.append((node.rect, node.key))
            if node.right:
                stack.append(node.right)
            if node.left:
                stack.append(node.left)
        return result

    def clear(self) -> None:
        self._root = None
        self._live = 0
        self._dead = 0

    def depth(self) -> int:
        """Number of levels in the tree (0 when empty)."""
        if self._root is None:
            return 0
        deepest = 0
        stack = [(self._root, 1)]
        while stack:
            node, level = stack.pop()
            deepest = max(deepest, level)
            for child in (node.left, node.right):
                if child:
                    stack.append((child, level + 1))
        return deepest

    def insert(self, rect: Rect, key: Hashable = None) -> None:
        """Add a rectangle, rebuilding the tree when it grows too deep.

        Args:
            rect: Rectangle to index.
            key: Optional payload returned by ``query`` (e.g. a room id).
        """
        if self._root is None:
            self._root = _Node(
                rect=rect, key=key, axis=0, split=rect.center2[0], bbox=rect
            )
            self._live += 1
            return

        node = self._root
        level = 1
        while True:
            node.bbox = node.bbox.union(rect)
            go_left = rect.center2[node.axis] < node.split
            child = node.left if go_left else node.right
            if child is None:
                axis = 1 - node.axis
                leaf = _Node(
                    rect=rect, key=key, axis=axis, split=rect.center2[axis], bbox=rect
                )
                if go_left:
                    node.left = leaf
                else:
                    node.right = leaf
                level += 1
                break
            node = child
            level += 1

        self._live += 1
        if level > self._depth_limit():
            console_logger.debug(
                f"KD-tree leaf depth {level} exceeds limit for {self._live} "
                "rects, rebuilding"
            )
            self.rebuild()

    def remove(self, rect: Rect, key: Hashable = None) -> bool:
        """Remove one live entry equal to ``rect`` (and ``key`` if given).

        Returns:
            True if an entry was removed, False if none matched.
        """
        node = self._find(rect, key)
        if node is None:
            return False
        node.alive = False
        self._live -= 1
        self._dead += 1
        if self._dead > self._live:
            self.rebuild()
        return True

    def overlaps(self, rect: Rect) -> bool:
        """Check if ``rect`` shares interior area with any indexed rectangle."""
        stack = [self._root] if self._root else []
        while stack:
            node = stack.pop()
            if not node.bbox.overlaps(rect):
                continue
            if node.alive and node.rect.overlaps(rect):
                return True
            if node.left:
                stack.append(node.left)
            if node.right:
                stack.append(node.right)
        return False

    def query(self, region: Rect, touching: bool = False) -> list[tuple[Rect, Hashable]]:
        """Live entries intersecting ``region``.

        Args:
            region: Query rectangle.
            touching: If True, also report entries that only share an edge or
                corner with ``region``.

        Returns:
            (rect, key) pairs in tree order.
        """
        hit = Rect.touches if touching else Rect.overlaps
        found: list[tuple[Rect, Hashable]] = []
        stack = [self._root] if self._root else []
        while stack:
            node = stack.pop()
            if not hit(node.bbox, region):
                continue
            if node.alive and hit(node.rect, region):
                found.append((node.rect, node.key))
            if node.right:
                stack.append(node.right)
            if node.left:
                stack.append(node.left)
        return found

    def rebuild(self) -> None:
        """Rebuild a balanced tree from the live entries, dropping tombstones."""
        entries = self.entries()
        self._root = self._build(entries, axis=0) if entries else None
        self._live = len(entries)
        self._dead = 0
        self.rebuilds += 1

    def _depth_limit(self) -> int:
        return 2 * (self._live + self._dead).bit_length() + 2

    def _find(self, rect: Rect, key: Hashable) -> _Node | None:
        stack = [self._root] if self._root else []
        center = rect.center2
        while stack:
            node = stack.pop()
            if not node.bbox.contains_rect(rect):
                continue
            if node.alive and node.rect == rect and (key is None or node.key == key):
                return node
            value = center[node.axis]
            # Ties may sit on either side after a median rebuild.
            if value <= node.split and node.left:
                stack.append(node.left)
            if value >= node.split and node.right:
                stack.append(node.right)
        return None

    def _build(self, entries: list[tuple[Rect, Hashable]], axis: int) -> _Node | None:
        if not entries:
            return None
        coords = np.array([rect.to_list() for rect, _ in entries], dtype=np.int64)
        keys = coords[:, axis] + coords[:, axis + 2]
        order = np.argsort(keys, kind="stable")
        ordered = [entries[i] for i in order]
        median = len(ordered) // 2
        rect, key = ordered[median]
        bbox = Rect(
            min_x=int(coords[:, 0].min()),
            min_y=int(coords[:, 1].min()),
            max_x=int(coords[:, 2].max()),
            max_y=int(coords[:, 3].max()),
        )
        node = _Node(rect=rect, key=key, axis=axis, split=rect.center2[axis], bbox=bbox)
        node.left = self._build(ordered[:median], axis=1 - axis)
        node.right = self._build(ordered[median + 1 :], axis=1 - axis)
        return node
