"""Grid geometry primitives for room layout.

All coordinates are integer grid units. X grows east and Y grows south, so row
0 is the northern edge of the map (the usual tile-grid convention). Rectangles
are half-open: a room at origin (x, y) with size (w, h) covers the tiles
``x <= tx < x + w`` and ``y <= ty < y + h``.
"""

from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple

QUARTER_TURNS = (0, 1, 2, 3)
"""Supported rotations, as clockwise quarter turns."""


class Direction(Enum):
    """Cardinal direction a room side (and its connectors) faces."""

    NORTH = "north"
    EAST = "east"
    SOUTH = "south"
    WEST = "west"

    def opposite(self) -> "Direction":
        """Direction facing the other way."""
        return _OPPOSITES[self]

    def rotated(self, quarter_turns: int) -> "Direction":
        """Direction after rotating clockwise by the given quarter turns."""
        order = _CLOCKWISE
        return order[(order.index(self) + quarter_turns) % 4]

    @property
    def outward_normal(self) -> tuple[int, int]:
        """Unit vector pointing OUT of a room through a side facing this way."""
        return _NORMALS[self]

    @property
    def is_horizontal(self) -> bool:
        """True for sides that run along the X axis (north and south)."""
        return self in (Direction.NORTH, Direction.SOUTH)


_CLOCKWISE = (Direction.NORTH, Direction.EAST, Direction.SOUTH, Direction.WEST)
_OPPOSITES = {
    Direction.NORTH: Direction.SOUTH,
    Direction.SOUTH: Direction.NORTH,
    Direction.EAST: Direction.WEST,
    Direction.WEST: Direction.EAST,
}
_NORMALS = {
    Direction.NORTH: (0, -1),
    Direction.SOUTH: (0, 1),
    Direction.EAST: (1, 0),
    Direction.WEST: (-1, 0),
}


@dataclass(frozen=True)
class Rect:
    """Axis-aligned half-open rectangle on the grid."""

    min_x: int
    min_y: int
    max_x: int
    max_y: int

    @classmethod
    def from_origin(cls, origin: tuple[int, int], width: int, height: int) -> "Rect":
        """Build a rectangle from its north-west corner and size."""
        x, y = origin
        return cls(min_x=x, min_y=y, max_x=x + width, max_y=y + height)

    @property
    def width(self) -> int:
        return self.max_x - self.min_x

    @property
    def height(self) -> int:
        return self.max_y - self.min_y

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def center2(self) -> tuple[int, int]:
        """Center point scaled by two, so it stays integral for odd sizes."""
        return (self.min_x + self.max_x, self.min_y + self.max_y)

    def overlaps(self, other: "Rect") -> bool:
        """Check if two rectangles share interior area.

        Touching edges or corners are NOT an overlap: adjacent rooms joined at
        a connector share exactly one boundary edge.
        """
        return (
            self.min_x < other.max_x
            and self.max_x > other.min_x
            and self.min_y < other.max_y
            and self.max_y > other.min_y
        )

    def touches(self, other: "Rect") -> bool:
        """Check if two rectangles intersect or share any boundary point."""
        return (
            self.min_x <= other.max_x
            and self.max_x >= other.min_x
            and self.min_y <= other.max_y
            and self.max_y >= other.min_y
        )

    def intersection_area(self, other: "Rect") -> int:
        dx = min(self.max_x, other.max_x) - max(self.min_x, other.min_x)
        dy = min(self.max_y, other.max_y) - max(self.min_y, other.min_y)
        if dx <= 0 or dy <= 0:
            return 0
        return dx * dy

    def contains_rect(self, other: "Rect") -> bool:
        return (
            self.min_x <= other.min_x
            and self.min_y <= other.min_y
            and self.max_x >= other.max_x
            and self.max_y >= other.max_y
        )

    def union(self, other: "Rect") -> "Rect":
        """Smallest rectangle covering both rectangles."""
        return Rect(
            min_x=min(self.min_x, other.min_x),
            min_y=min(self.min_y, other.min_y),
            max_x=max(self.max_x, other.max_x),
            max_y=max(self.max_y, other.max_y),
        )

    def translated(self, dx: int, dy: int) -> "Rect":
        return Rect(
            min_x=self.min_x + dx,
            min_y=self.min_y + dy,
            max_x=self.max_x + dx,
            max_y=self.max_y + dy,
        )

    def to_list(self) -> list[int]:
        return [self.min_x, self.min_y, self.max_x, self.max_y]


class Segment(NamedTuple):
    """Axis-aligned port segment in world coordinates."""

    direction: Direction
    """Direction the port faces (outward from its room)."""

    start: tuple[int, int]
    """Segment end with the smaller coordinate along the side."""

    end: tuple[int, int]
    """Segment end with the larger coordinate along the side."""

    @property
    def width(self) -> int:
        return abs(self.end[0] - self.start[0]) + abs(self.end[1] - self.start[1])

    @property
    def line(self) -> int:
        """Fixed coordinate of the side this segment lies on."""
        return self.start[1] if self.direction.is_horizontal else self.start[0]

    @property
    def along(self) -> int:
        """Coordinate of the segment start along its side."""
        return self.start[0] if self.direction.is_horizontal else self.start[1]


def side_length(side: Direction, width: int, height: int) -> int:
    """Length of a room side facing ``side``."""
    return width if side.is_horizontal else height


def port_segment(
    side: Direction, offset: int, port_width: int, origin: tuple[int, int],
    width: int, height: int,
) -> Segment:
    """World segment of a port on a room placed at ``origin``.

    Args:
        side: Side of the room the port sits on.
        offset: Distance from the side's west end (N/S) or north end (E/W).
        port_width: Port width in grid units.
        origin: North-west corner of the room.
        width: Room width (X extent).
        height: Room height (Y extent).

    Returns:
        Segment with ``start`` at the lower coordinate along the side.
    """
    x, y = origin
    if side == Direction.NORTH:
        return Segment(side, (x + offset, y), (x + offset + port_width, y))
    if side == Direction.SOUTH:
        return Segment(
            side, (x + offset, y + height), (x + offset + port_width, y + height)
        )
    if side == Direction.WEST:
        return Segment(side, (x, y + offset), (x, y + offset + port_width))
    return Segment(side, (x + width, y + offset), (x + width, y + offset + port_width))


def rotate_port(
    side: Direction, offset: int, port_width: int, width: int, height: int,
    quarter_turns: int,
) -> tuple[Direction, int]:
    """Rotate a port clockwise together with its room.

    Each quarter turn maps a local point ``(x, y)`` of a ``width x height`` room
    to ``(height - y, x)`` in the rotated room, whose size is
    ``height x width``. Ports on north/south sides keep their offset; ports on
    east/west sides are mirrored along the new side.

    Returns:
        (new side, new offset).
    """
    for _ in range(quarter_turns % 4):
        if not side.is_horizontal:
            offset = height - offset - port_width
        side = side.rotated(1)
        width, height = height, width
    return side, offset


def rotated_size(width: int, height: int, quarter_turns: int) -> tuple[int, int]:
    if quarter_turns % 2:
        return height, width
    return width, height


def align_origin(
    target: Segment, room_width: int, room_height: int, port_offset: int
) -> tuple[int, int]:
    """Origin placing a room so its port starts where ``target`` starts.

    The room's port must face ``target.direction.opposite()``. The room ends up
    on the outer side of ``target``, sharing exactly the boundary line.

    Args:
        target: World segment of the open connector being expanded.
        room_width: Width of the (rotated) room being attached.
        room_height: Height of the (rotated) room being attached.
        port_offset: Offset of the attaching port along its side.

    Returns:
        North-west corner (x, y) of the attached room.
    """
    line, along = target.line, target.along
    if target.direction == Direction.SOUTH:
        return (along - port_offset, line)
    if target.direction == Direction.NORTH:
        return (along - port_offset, line - room_height)
    if target.direction == Direction.EAST:
        return (line, along - port_offset)
    return (line - room_width, along - port_offset)
