"""Built-in cavern room templates.

Each room is drawn as tile rows from north to south ('.' open floor, '#'
solid rock). Open tiles on a room's border become one-unit connectors, so
rooms only join where floor meets floor.
"""

from dungeonsmith.layout.catalog import RoomCatalog, RoomTemplate
from dungeonsmith.layout.geometry import QUARTER_TURNS

START_CAVERN = (
    "..........",
    "..........",
    ".###.####.",
    ".##....##.",
    ".#.....#..",
    ".#.....#..",
    ".#.....#..",
    ".##....#..",
    ".###...##.",
    "####..####",
)

CAVERN_LAYOUTS: dict[str, tuple[str, ...]] = {
    "corridor": (
        "###",
        "...",
        "###",
    ),
    "bend_left": (
        ".##",
        "...",
        "##.",
    ),
    "bend_right": (
        "##.",
        "...",
        ".##",
    ),
    "shaft": (
        "#.#",
        "#.#",
        "#.#",
    ),
    "zigzag": (
        "..#",
        "#.#",
        "#..",
    ),
    "chimney": (
        "....",
        "#...",
        "#..#",
        "#.##",
        "#.##",
        "#.##",
        "####",
    ),
    "gallery": (
        ".....###",
        "###..###",
        "#......#",
        "###..###",
    ),
    "colonnade": (
        ".#.#.#.#.",
        ".#######.",
        ".#.#.#.#.",
    ),
    "overhang": (
        "........",
        "########",
        ".######.",
        ".##..##.",
    ),
    "pillared_hall": (
        ".........",
        ".#######.",
        ".#.#.#.#.",
        ".#######.",
        ".#.#.#.#.",
        ".#######.",
    ),
    "slope": (
        "##.......",
        "#....#...",
        "....###..",
        ".....###.",
        ".....####",
        "...######",
    ),
}


def default_catalog(rotations: tuple[int, ...] = QUARTER_TURNS) -> RoomCatalog:
    """Catalog of the built-in cavern rooms with the start cavern as anchor.

    Args:
        rotations: Quarter turns every template may be placed with.

    Returns:
        A validated RoomCatalog.
    """
    templates = [
        RoomTemplate.from_layout(rows=rows, name=name, rotations=rotations)
        for name, rows in CAVERN_LAYOUTS.items()
    ]
    anchor = RoomTemplate.from_layout(
        rows=START_CAVERN, name="start_cavern", rotations=rotations
    )
    return RoomCatalog(templates=templates, anchors=[anchor])
