"""Placed rooms and their connector-level adjacency: the generator's output."""

import hashlib
import json
import logging

from collections import deque
from dataclasses import dataclass, field
from enum import Enum

from dungeonsmith.layout.catalog import Connector
from dungeonsmith.layout.geometry import Rect, Segment, port_segment
from dungeonsmith.layout.kd_tree import RectKDTree

console_logger = logging.getLogger(__name__)


class FrozenMapError(RuntimeError):
    """Raised when a frozen MapGraph is modified."""


class ConnectorState(Enum):
    """Lifecycle of a placed room's connector."""

    OPEN = "open"
    """Waiting on the frontier for a neighbor."""

    MATCHED = "matched"
    """Linked to a coincident, opposite-facing port of another room."""

    BLOCKED = "blocked"
    """Closed: nothing fits there, or the layout finished with it unused."""


@dataclass
class PlacedRoom:
    """Room template instantiated at a world position.

    Geometry is fixed once the room is committed; only connector states change
    as neighbors attach or are rolled back.
    """

    room_id: int
    """Index in the map, equal to placement order (the seed room is 0)."""

    template_id: int
    """Catalog index of the template this room was built from."""

    rotation: int
    """Clockwise quarter turns applied to the template."""

    origin: tuple[int, int]
    """North-west corner in world coordinates."""

    width: int
    """X extent after rotation."""

    height: int
    """Y extent after rotation."""

    connectors: tuple[Connector, ...]
    """Connectors after rotation, relative to the room."""

    connector_states: list[ConnectorState] = field(default_factory=list)
    """One state per connector; defaults to all OPEN. A tuple once frozen."""

    _frozen: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name, value) -> None:
        if self._frozen:
            raise FrozenMapError(
                f"Room {self.room_id} belongs to a frozen map and can no longer change"
            )
        super().__setattr__(name, value)

    def freeze(self) -> None:
        """Make the room read-only, connector states included."""
        object.__setattr__(self, "connector_states", tuple(self.connector_states))
        object.__setattr__(self, "_frozen", True)

    def __post_init__(self) -> None:
        self.origin = (int(self.origin[0]), int(self.origin[1]))
        self.connectors = tuple(self.connectors)
        if not self.connector_states:
            self.connector_states = [ConnectorState.OPEN] * len(self.connectors)
        if len(self.connector_states) != len(self.connectors):
            raise ValueError(
                f"Room {self.room_id} has {len(self.connectors)} connectors but "
                f"{len(self.connector_states)} states"
            )

    @property
    def rect(self) -> Rect:
        return Rect.from_origin(self.origin, self.width, self.height)

    @property
    def area(self) -> int:
        return self.width * self.height

    def world_port(self, connector_index: int) -> Segment:
        """World segment of one of this room's connectors."""
        connector = self.connectors[connector_index]
        return port_segment(
            side=connector.side,
            offset=connector.offset,
            port_width=connector.width,
            origin=self.origin,
            width=self.width,
            height=self.height,
        )

    def open_connectors(self) -> list[int]:
        return [
            i for i, state in enumerate(self.connector_states) if state == ConnectorState.OPEN
        ]

    def to_dict(self) -> dict:
        """Serialize placed room to dictionary."""
        return {
            "room_id": self.room_id,
            "template_id": self.template_id,
            "rotation": self.rotation,
            "origin": list(self.origin),
            "width": self.width,
            "height": self.height,
            "rect": self.rect.to_list(),
            "connectors": [c.to_dict() for c in self.connectors],
            "connector_states": [s.value for s in self.connector_states],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PlacedRoom":
        """Deserialize placed room from dictionary."""
        return cls(
            room_id=data["room_id"],
            template_id=data["template_id"],
            rotation=data["rotation"],
            origin=tuple(data["origin"]),
            width=data["width"],
            height=data["height"],
            connectors=tuple(Connector.from_dict(c) for c in data["connectors"]),
            connector_states=[ConnectorState(s) for s in data["connector_states"]],
        )


@dataclass(frozen=True)
class ConnectorLink:
    """A matched pair of connectors.

    ``room_a`` is the room that was already placed; ``room_b`` attached to it.
    """

    room_a: int
    connector_a: int
    room_b: int
    connector_b: int

    def to_dict(self) -> dict:
        return {
            "room_a": self.room_a,
            "connector_a": self.connector_a,
            "room_b": self.room_b,
            "connector_b": self.connector_b,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConnectorLink":
        return cls(
            room_a=data["room_a"],
            connector_a=data["connector_a"],
            room_b=data["room_b"],
            connector_b=data["connector_b"],
        )


class MapGraph:
    """Placed rooms plus matched connector pairs.

    Rooms and links are appended and removed in stack order while a search is
    running. ``freeze()`` turns the graph into a read-only artifact.
    """

    def __init__(self):
        self._rooms: list[PlacedRoom] = []
        self._links: list[ConnectorLink] = []
        self._frozen = False

    @property
    def rooms(self) -> tuple[PlacedRoom, ...]:
        return tuple(self._rooms)

    @property
    def links(self) -> tuple[ConnectorLink, ...]:
        return tuple(self._links)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __len__(self) -> int:
        return len(self._rooms)

    def room(self, room_id: int) -> PlacedRoom:
        return self._rooms[room_id]

    def _check_mutable(self) -> None:
        if self._frozen:
            raise FrozenMapError("MapGraph is frozen and can no longer change")

    def add_room(self, room: PlacedRoom) -> None:
        """Append a room; its id must equal the current room count."""
        self._check_mutable()
        if room.room_id != len(self._rooms):
            raise ValueError(
                f"Room id {room.room_id} out of order, expected {len(self._rooms)}"
            )
        self._rooms.append(room)

    def pop_room(self) -> PlacedRoom:
        """Remove the most recently added room.

        Raises:
            ValueError: If a link still references the room.
        """
        self._check_mutable()
        room = self._rooms[-1]
        if self._links and room.room_id in (self._links[-1].room_a, self._links[-1].room_b):
            raise ValueError(f"Room {room.room_id} still has links, pop its links first")
        return self._rooms.pop()

    def add_link(
        self, room_a: int, connector_a: int, room_b: int, connector_b: int
    ) -> ConnectorLink:
        """Link two open connectors and mark both MATCHED."""
        self._check_mutable()
        for room_id, index in ((room_a, connector_a), (room_b, connector_b)):
            state = self._rooms[room_id].connector_states[index]
            if state != ConnectorState.OPEN:
                raise ValueError(
                    f"Connector {index} of room {room_id} is {state.value}, not open"
                )
        link = ConnectorLink(room_a, connector_a, room_b, connector_b)
        self._rooms[room_a].connector_states[connector_a] = ConnectorState.MATCHED
        self._rooms[room_b].connector_states[connector_b] = ConnectorState.MATCHED
        self._links.append(link)
        return link

    def pop_link(self) -> ConnectorLink:
        """Remove the most recent link and reopen both connectors."""
        self._check_mutable()
        link = self._links.pop()
        self._rooms[link.room_a].connector_states[link.connector_a] = ConnectorState.OPEN
        self._rooms[link.room_b].connector_states[link.connector_b] = ConnectorState.OPEN
        return link

    def set_connector_state(
        self, room_id: int, connector_index: int, state: ConnectorState
    ) -> None:
        self._check_mutable()
        self._rooms[room_id].connector_states[connector_index] = state

    def freeze(self) -> None:
        """Make the graph and every room in it read-only."""
        self._frozen = True
        for room in self._rooms:
            room.freeze()

    def adjacency(self) -> dict[int, set[int]]:
        neighbors: dict[int, set[int]] = {room.room_id: set() for room in self._rooms}
        for link in self._links:
            neighbors[link.room_a].add(link.room_b)
            neighbors[link.room_b].add(link.room_a)
        return neighbors

    def reachable_from(self, room_id: int = 0) -> set[int]:
        if not self._rooms:
            return set()
        neighbors = self.adjacency()
        seen = {room_id}
        queue = deque([room_id])
        while queue:
            current = queue.popleft()
            for neighbor in neighbors[current]:
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append(neighbor)
        return seen

    def is_connected(self) -> bool:
        return len(self.reachable_from(0)) == len(self._rooms)

    def total_area(self) -> int:
        return sum(room.area for room in self._rooms)

    def bounding_rect(self) -> Rect | None:
        if not self._rooms:
            return None
        bounds = self._rooms[0].rect
        for room in self._rooms[1:]:
            bounds = bounds.union(room.rect)
        return bounds

    def to_dict(self) -> dict:
        """Serialize the graph; the stable exchange format for exporters."""
        return {
            "rooms": [room.to_dict() for room in self._rooms],
            "links": [link.to_dict() for link in self._links],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))

    def content_hash(self) -> str:
        """SHA-256 of the canonical JSON form.

        Two runs with the same seed, catalog and configuration produce the
        same hash.
        """
        return hashlib.sha256(self.to_json().encode()).hexdigest()

    @classmethod
    def from_dict(cls, data: dict, frozen: bool = True) -> "MapGraph":
        """Deserialize a graph, frozen by default."""
        graph = cls()
        graph._rooms = [PlacedRoom.from_dict(r) for r in data.get("rooms", [])]
        graph._links = [ConnectorLink.from_dict(link) for link in data.get("links", [])]
        if frozen:
            graph.freeze()
        return graph


def ports_aligned(a: Segment, b: Segment) -> bool:
    """Check that two ports face each other on the same boundary line.

    The narrower port must start where the wider one starts and fit inside it,
    which makes equally wide ports exactly coincident.
    """
    if a.direction.opposite() != b.direction:
        return False
    if a.line != b.line or a.start != b.start:
        return False
    narrow, wide = sorted((a, b), key=lambda s: s.width)
    return narrow.along + narrow.width <= wide.along + wide.width


def validate_map(graph: MapGraph, require_closed: bool = False) -> list[str]:
    """Check the structural guarantees of a generated map.

    Checks that no two rooms share interior area, that every linked connector
    pair is aligned and MATCHED, that no connector is linked twice and that
    every room is reachable from room 0 through links.

    Args:
        graph: Map to check.
        require_closed: Also report connectors still OPEN (a finished map has
            none).

    Returns:
        Human-readable problems; empty when the map is valid.
    """
    problems: list[str] = []
    rooms = graph.rooms
    if not rooms:
        return problems

    index = RectKDTree()
    for room in rooms:
        for other_rect, other_id in index.query(room.rect):
            problems.append(
                f"Rooms {other_id} and {room.room_id} overlap by "
                f"{room.rect.intersection_area(other_rect)} tiles"
            )
        index.insert(room.rect, key=room.room_id)

    used: set[tuple[int, int]] = set()
    for link in graph.links:
        for end in ((link.room_a, link.connector_a), (link.room_b, link.connector_b)):
            if end in used:
                problems.append(f"Connector {end[1]} of room {end[0]} is linked twice")
            used.add(end)
            if rooms[end[0]].connector_states[end[1]] != ConnectorState.MATCHED:
                problems.append(
                    f"Connector {end[1]} of room {end[0]} is linked but "
                    f"{rooms[end[0]].connector_states[end[1]].value}"
                )
        port_a = rooms[link.room_a].world_port(link.connector_a)
        port_b = rooms[link.room_b].world_port(link.connector_b)
        if not ports_aligned(port_a, port_b):
            problems.append(f"Misaligned ports in link {link}: {port_a} vs {port_b}")

    for room in rooms:
        for i, state in enumerate(room.connector_states):
            if state == ConnectorState.MATCHED and (room.room_id, i) not in used:
                problems.append(f"Connector {i} of room {room.room_id} is matched without a link")
            if require_closed and state == ConnectorState.OPEN:
                problems.append(f"Connector {i} of room {room.room_id} is still open")

    unreachable = set(range(len(rooms))) - graph.reachable_from(0)
    if unreachable:
        problems.append(f"Rooms not reachable from the seed room: {sorted(unreachable)}")

    return problems
