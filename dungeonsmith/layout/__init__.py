"""Procedural dungeon room layout: catalog, spatial index and placement search."""

from dungeonsmith.layout.catalog import (
    Connector,
    InvalidCatalogError,
    RoomCatalog,
    RoomTemplate,
)
from dungeonsmith.layout.default_rooms import default_catalog
from dungeonsmith.layout.geometry import Direction, Rect
from dungeonsmith.layout.kd_tree import RectKDTree
from dungeonsmith.layout.map_graph import (
    ConnectorLink,
    ConnectorState,
    FrozenMapError,
    MapGraph,
    PlacedRoom,
    validate_map,
)
from dungeonsmith.layout.placement_search import (
    FailureReason,
    GenerationResult,
    InvalidConfigError,
    PlacementConfig,
    PlacementError,
    PlacementSearch,
    SearchExhaustedError,
    SearchPhase,
    generate_map,
)
from dungeonsmith.layout.randomness import RandomnessSource

__all__ = [
    "Connector",
    "ConnectorLink",
    "ConnectorState",
    "default_catalog",
    "Direction",
    "FailureReason",
    "FrozenMapError",
    "generate_map",
    "GenerationResult",
    "InvalidCatalogError",
    "InvalidConfigError",
    "MapGraph",
    "PlacedRoom",
    "PlacementConfig",
    "PlacementError",
    "PlacementSearch",
    "RandomnessSource",
    "Rect",
    "RectKDTree",
    "RoomCatalog",
    "RoomTemplate",
    "SearchExhaustedError",
    "SearchPhase",
    "validate_map",
]
