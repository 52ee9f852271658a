"""Shared catalogs and checks for layout tests."""

from dungeonsmith.layout.catalog import Connector, RoomCatalog, RoomTemplate
from dungeonsmith.layout.geometry import Direction
from dungeonsmith.layout.placement_search import PlacementSearch


def hall_and_alcove_catalog() -> RoomCatalog:
    """4x4 seed hall with a south door at offset 2, and a 3x3 alcove with a
    north door at offset 1."""
    hall = RoomTemplate(
        width=4,
        height=4,
        connectors=(Connector(Direction.SOUTH, 2),),
        name="hall",
    )
    alcove = RoomTemplate(
        width=3,
        height=3,
        connectors=(Connector(Direction.NORTH, 1),),
        name="alcove",
    )
    return RoomCatalog(templates=[alcove], anchors=[hall])


def dead_end_catalog() -> RoomCatalog:
    """Catalog where no template can ever attach to the seed."""
    south_only = RoomTemplate(
        width=2, height=2, connectors=(Connector(Direction.SOUTH, 0),), name="drop"
    )
    return RoomCatalog(templates=[south_only], anchors=[south_only])


def detour_catalog() -> RoomCatalog:
    """Catalog whose first choice below the seed leads into a dead end.

    Template 0 ("nook", 2x1) opens north and east, but nothing faces west, so
    its east door can never be filled. Template 1 ("shaft", 1x2) opens north
    and south. The 4x4 anchor (template 2) has one south door at offset 0.
    """
    nook = RoomTemplate(
        width=2,
        height=1,
        connectors=(Connector(Direction.NORTH, 0), Connector(Direction.EAST, 0)),
        name="nook",
    )
    shaft = RoomTemplate(
        width=1,
        height=2,
        connectors=(Connector(Direction.NORTH, 0), Connector(Direction.SOUTH, 0)),
        name="shaft",
    )
    hall = RoomTemplate(
        width=4, height=4, connectors=(Connector(Direction.SOUTH, 0),), name="hall"
    )
    return RoomCatalog(templates=[nook, shaft], anchors=[hall])


def assert_index_matches_graph(search: PlacementSearch) -> None:
    """The spatial index holds exactly the rects of the committed rooms."""
    entries = sorted(search.index.entries(), key=lambda entry: entry[1])
    assert [key for _, key in entries] == list(range(len(search.graph)))
    for rect, key in entries:
        assert rect == search.graph.room(key).rect
