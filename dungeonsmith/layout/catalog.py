"""Room templates and the immutable catalog the placement search draws from."""

import logging

from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterator, NamedTuple, Sequence

from dungeonsmith.layout.geometry import (
    QUARTER_TURNS,
    Direction,
    rotate_port,
    rotated_size,
    side_length,
)

console_logger = logging.getLogger(__name__)

OPEN_TILE = "."
SOLID_TILE = "#"


class InvalidCatalogError(ValueError):
    """Raised when a template or catalog is malformed."""


def _is_grid_int(value) -> bool:
    # bool is an int subclass but never a grid coordinate.
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class Connector:
    """Entrance/exit port on a room's perimeter."""

    side: Direction
    """Side of the room the port sits on; the port faces outward this way."""

    offset: int
    """Grid units from the side's west end (N/S sides) or north end (E/W sides)."""

    width: int = 1
    """Port width in grid units."""

    def to_dict(self) -> dict:
        """Serialize connector to dictionary."""
        return {"side": self.side.value, "offset": self.offset, "width": self.width}

    @classmethod
    def from_dict(cls, data: dict) -> "Connector":
        """Deserialize connector from dictionary.

        Raises:
            InvalidCatalogError: If the side is unknown, the offset is missing,
                or offset or width is not an integer.
        """
        try:
            side = Direction(data["side"])
            offset = data["offset"]
            width = data.get("width", 1)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise InvalidCatalogError(f"Malformed connector {data!r}: {e!r}") from e
        if not _is_grid_int(offset) or not _is_grid_int(width):
            raise InvalidCatalogError(
                f"Connector offset and width must be integers, got {data!r}"
            )
        return cls(side=side, offset=offset, width=width)


@dataclass(frozen=True)
class RotatedTemplate:
    """A template seen through one of its allowed rotations."""

    width: int
    height: int
    rotation: int
    connectors: tuple[Connector, ...]


@dataclass(frozen=True)
class RoomTemplate:
    """Immutable rectangular room footprint with its connectors.

    Templates are validated on construction. A template is never mutated after
    it enters a catalog; its identity there is its catalog index.
    """

    width: int
    """X extent in grid units."""

    height: int
    """Y extent in grid units."""

    connectors: tuple[Connector, ...]
    """Ports in their unrotated positions."""

    name: str = ""
    """Human-readable label, only used for logging and serialization."""

    rotations: tuple[int, ...] = (0,)
    """Clockwise quarter turns the search may apply to this template."""

    layout: tuple[str, ...] | None = None
    """Optional tile rows ('.' open, '#' solid) the template was built from."""

    _rotated: dict[int, RotatedTemplate] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "connectors", tuple(self.connectors))
        object.__setattr__(self, "rotations", tuple(self.rotations))
        if self.layout is not None:
            object.__setattr__(self, "layout", tuple(self.layout))
        self._validate()

    def _validate(self) -> None:
        label = self.name or "<unnamed>"
        if not _is_grid_int(self.width) or not _is_grid_int(self.height):
            raise InvalidCatalogError(
                f"Template {label} size must be integers, got "
                f"{self.width!r}x{self.height!r}"
            )
        if self.width <= 0 or self.height <= 0:
            raise InvalidCatalogError(
                f"Template {label} has non-positive size {self.width}x{self.height}"
            )
        if not self.connectors:
            raise InvalidCatalogError(f"Template {label} has no connectors")
        if not self.rotations:
            raise InvalidCatalogError(f"Template {label} allows no rotations")
        for rotation in self.rotations:
            if not _is_grid_int(rotation) or rotation not in QUARTER_TURNS:
                raise InvalidCatalogError(
                    f"Template {label} has invalid rotation {rotation}; "
                    f"expected one of {QUARTER_TURNS}"
                )
        if len(set(self.rotations)) != len(self.rotations):
            raise InvalidCatalogError(f"Template {label} repeats a rotation")
        seen: set[Connector] = set()
        for connector in self.connectors:
            if not isinstance(connector, Connector):
                raise InvalidCatalogError(
                    f"Template {label} has non-connector entry {connector!r}"
                )
            if not isinstance(connector.side, Direction):
                raise InvalidCatalogError(
                    f"Template {label} has connector with invalid side "
                    f"{connector.side!r}"
                )
            if not _is_grid_int(connector.offset) or not _is_grid_int(connector.width):
                raise InvalidCatalogError(
                    f"Template {label} has connector with non-integer offset or "
                    f"width: {connector}"
                )
            if connector.width < 1:
                raise InvalidCatalogError(
                    f"Template {label} has connector narrower than one unit: "
                    f"{connector}"
                )
            length = side_length(connector.side, self.width, self.height)
            if connector.offset < 0 or connector.offset + connector.width > length:
                raise InvalidCatalogError(
                    f"Template {label} has connector outside its "
                    f"{connector.side.value} side (length {length}): {connector}"
                )
            if connector in seen:
                raise InvalidCatalogError(
                    f"Template {label} has duplicate connector {connector}"
                )
            seen.add(connector)

    @classmethod
    def from_layout(
        cls,
        rows: Sequence[str],
        name: str = "",
        rotations: tuple[int, ...] = (0,),
    ) -> "RoomTemplate":
        """Build a template from tile rows.

        Every open tile on the border becomes a one-unit connector on each
        side it touches, so an open corner tile yields two connectors.

        Args:
            rows: Tile rows from north to south, west to east. '.' marks an
                open tile and '#' a solid one.
            name: Template label.
            rotations: Allowed clockwise quarter turns.

        Returns:
            The validated template.

        Raises:
            InvalidCatalogError: If rows are empty, ragged or contain unknown
                tiles, or if the border has no open tile.
        """
        if isinstance(rows, str):
            raise InvalidCatalogError(
                f"Template {name or '<unnamed>'} layout must be a list of rows"
            )
        rows = tuple(rows)
        if not all(isinstance(row, str) for row in rows):
            raise InvalidCatalogError(
                f"Template {name or '<unnamed>'} layout rows must be strings"
            )
        if not rows or not rows[0]:
            raise InvalidCatalogError(f"Template {name or '<unnamed>'} has empty layout")
        width = len(rows[0])
        height = len(rows)
        for row in rows:
            if len(row) != width:
                raise InvalidCatalogError(
                    f"Template {name or '<unnamed>'} has ragged layout rows"
                )
            unknown = set(row) - {OPEN_TILE, SOLID_TILE}
            if unknown:
                raise InvalidCatalogError(
                    f"Template {name or '<unnamed>'} has unknown tiles "
                    f"{sorted(unknown)}"
                )

        connectors: list[Connector] = []
        connectors.extend(
            Connector(Direction.NORTH, x) for x in range(width) if rows[0][x] == OPEN_TILE
        )
        connectors.extend(
            Connector(Direction.EAST, y)
            for y in range(height)
            if rows[y][width - 1] == OPEN_TILE
        )
        connectors.extend(
            Connector(Direction.SOUTH, x)
            for x in range(width)
            if rows[height - 1][x] == OPEN_TILE
        )
        connectors.extend(
            Connector(Direction.WEST, y) for y in range(height) if rows[y][0] == OPEN_TILE
        )
        return cls(
            width=width,
            height=height,
            connectors=tuple(connectors),
            name=name,
            rotations=rotations,
            layout=rows,
        )

    def rotated(self, quarter_turns: int) -> RotatedTemplate:
        """Rotated view of the template (cached per rotation)."""
        quarter_turns %= 4
        cached = self._rotated.get(quarter_turns)
        if cached is not None:
            return cached
        width, height = rotated_size(self.width, self.height, quarter_turns)
        connectors = []
        for connector in self.connectors:
            side, offset = rotate_port(
                side=connector.side,
                offset=connector.offset,
                port_width=connector.width,
                width=self.width,
                height=self.height,
                quarter_turns=quarter_turns,
            )
            connectors.append(Connector(side=side, offset=offset, width=connector.width))
        view = RotatedTemplate(
            width=width,
            height=height,
            rotation=quarter_turns,
            connectors=tuple(connectors),
        )
        self._rotated[quarter_turns] = view
        return view

    @property
    def area(self) -> int:
        return self.width * self.height

    def to_dict(self) -> dict:
        """Serialize template to dictionary."""
        data = {
            "name": self.name,
            "width": self.width,
            "height": self.height,
            "connectors": [c.to_dict() for c in self.connectors],
            "rotations": list(self.rotations),
        }
        if self.layout is not None:
            data["layout"] = list(self.layout)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RoomTemplate":
        """Deserialize template from dictionary.

        A ``layout`` entry without explicit ``connectors`` is expanded with
        ``from_layout``.

        Raises:
            InvalidCatalogError: If the entry is not a mapping or describes an
                invalid template.
        """
        if not isinstance(data, dict):
            raise InvalidCatalogError(f"Template entry must be a mapping, got {data!r}")
        rotations = data.get("rotations")
        if rotations is None:
            rotations = (0,)
        if isinstance(rotations, (str, int)):
            raise InvalidCatalogError(
                f"Template {data.get('name', '<unnamed>')} rotations must be a list, "
                f"got {rotations!r}"
            )
        rotations = tuple(rotations)
        if "layout" in data and "connectors" not in data:
            return cls.from_layout(
                rows=data["layout"], name=data.get("name", ""), rotations=rotations
            )
        if "width" not in data or "height" not in data:
            raise InvalidCatalogError(
                f"Template {data.get('name', '<unnamed>')} needs width and height "
                "or a layout"
            )
        connectors = data.get("connectors") or []
        if not isinstance(connectors, (list, tuple)):
            raise InvalidCatalogError(
                f"Template {data.get('name', '<unnamed>')} connectors must be a list"
            )
        layout = data.get("layout")
        return cls(
            width=data["width"],
            height=data["height"],
            connectors=tuple(Connector.from_dict(c) for c in connectors),
            name=data.get("name", ""),
            rotations=rotations,
            layout=tuple(layout) if layout is not None else None,
        )


class CandidatePort(NamedTuple):
    """A (template, rotation, connector) combination that can attach somewhere."""

    template_id: int
    rotation: int
    connector_index: int
    port_width: int


class RoomCatalog:
    """Immutable collection of room templates.

    ``templates`` are attached to open connectors during the search.
    ``anchors`` are only used to seed a layout; when there are none the seed
    room is drawn from ``templates``. Template ids index ``templates`` first
    and then ``anchors``.
    """

    def __init__(
        self,
        templates: Sequence[RoomTemplate],
        anchors: Sequence[RoomTemplate] = (),
    ):
        self._templates = tuple(templates)
        self._anchors = tuple(anchors)
        if not self._templates:
            raise InvalidCatalogError("Catalog needs at least one attachable template")
        for template in self._templates + self._anchors:
            if not isinstance(template, RoomTemplate):
                raise InvalidCatalogError(
                    f"Catalog entries must be RoomTemplate, got {type(template).__name__}"
                )
        console_logger.debug(
            f"Catalog built with {len(self._templates)} templates and "
            f"{len(self._anchors)} anchors"
        )

    @property
    def templates(self) -> tuple[RoomTemplate, ...]:
        return self._templates

    @property
    def anchors(self) -> tuple[RoomTemplate, ...]:
        return self._anchors

    def __len__(self) -> int:
        return len(self._templates) + len(self._anchors)

    def __iter__(self) -> Iterator[RoomTemplate]:
        return iter(self._templates + self._anchors)

    def template(self, template_id: int) -> RoomTemplate:
        """Look up a template or anchor by catalog index."""
        if not 0 <= template_id < len(self):
            raise KeyError(f"Unknown template id {template_id}")
        if template_id < len(self._templates):
            return self._templates[template_id]
        return self._anchors[template_id - len(self._templates)]

    def seed_choices(self) -> list[tuple[int, int]]:
        """All (template_id, rotation) pairs usable for the seed room."""
        if self._anchors:
            first = len(self._templates)
            pool = [(first + i, t) for i, t in enumerate(self._anchors)]
        else:
            pool = list(enumerate(self._templates))
        return [
            (template_id, rotation)
            for template_id, template in pool
            for rotation in template.rotations
        ]

    @cached_property
    def _ports_by_side(self) -> dict[Direction, tuple[CandidatePort, ...]]:
        by_side: dict[Direction, list[CandidatePort]] = {d: [] for d in Direction}
        for template_id, template in enumerate(self._templates):
            for rotation in template.rotations:
                view = template.rotated(rotation)
                for index, connector in enumerate(view.connectors):
                    by_side[connector.side].append(
                        CandidatePort(
                            template_id=template_id,
                            rotation=rotation,
                            connector_index=index,
                            port_width=connector.width,
                        )
                    )
        return {side: tuple(ports) for side, ports in by_side.items()}

    def candidates_for(self, facing: Direction, port_width: int) -> list[CandidatePort]:
        """Attachable ports able to mate with an open connector.

        Args:
            facing: Direction the open connector faces.
            port_width: Width of the open connector.

        Returns:
            Ports facing the opposite way that are at least as wide, in
            catalog order.
        """
        return [
            port
            for port in self._ports_by_side[facing.opposite()]
            if port.port_width >= port_width
        ]

    def to_dict(self) -> dict:
        """Serialize catalog to dictionary."""
        return {
            "templates": [t.to_dict() for t in self._templates],
            "anchors": [t.to_dict() for t in self._anchors],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RoomCatalog":
        """Deserialize catalog from dictionary."""
        return cls(
            templates=[RoomTemplate.from_dict(t) for t in data.get("templates", [])],
            anchors=[RoomTemplate.from_dict(t) for t in data.get("anchors", [])],
        )
