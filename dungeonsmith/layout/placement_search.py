"""Depth-first backtracking placement of catalog rooms on open connectors.

Algorithm Overview
------------------
1. **Seeding**: A seed room (an anchor template, or any template when the
   catalog has no anchors) is placed at the origin, or centered in the map
   bounds when they are configured. Its connectors form the initial frontier.

2. **Expansion**: The most recently pushed open connector is popped from the
   frontier. Every catalog port facing the opposite way and at least as wide
   is a candidate; candidates are tried in a random order drawn from the run's
   RandomnessSource. A candidate is aligned so its port starts where the open
   connector starts, and is rejected if it leaves the bounds or overlaps a
   placed room (KD-tree query).

3. **Commit**: The first candidate that fits is added to the map, its rect is
   indexed and both connectors are MATCHED. The new room's remaining
   connectors are pushed on the frontier in random order.

4. **Backtracking**: Each expansion is a frame on an explicit stack holding
   the candidate order, a cursor and a snapshot of the frontier. When nothing
   fits, the parent frame's commit is undone (index entry, room, link and
   frontier restored) and its next candidate is tried. An exhausted stack
   means the seed is exhausted and the next seed candidate is tried.

5. **Termination**: The search succeeds once the room or area target is met,
   or when the frontier empties with at least ``min_rooms`` rooms. Remaining
   open connectors are then BLOCKED and the map is validated and frozen. It
   fails when every seed is exhausted or a budget runs out.

Properties
----------
- **Determinism**: Every choice comes from one RandomnessSource, so the same
  seed, catalog and config produce an identical map.
- **Soundness**: Committed rooms never overlap (edge contact is allowed), are
  all reachable from the seed room and every link joins aligned,
  opposite-facing ports.
- **Termination**: Each frame tries each of its candidates at most once, and
  ``max_attempts`` / ``timeout_seconds`` bound the total work.
"""

import logging
import time

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import NamedTuple

from dungeonsmith.layout.catalog import CandidatePort, RoomCatalog
from dungeonsmith.layout.geometry import Rect, Segment, align_origin
from dungeonsmith.layout.kd_tree import RectKDTree
from dungeonsmith.layout.map_graph import (
    ConnectorState,
    MapGraph,
    PlacedRoom,
    validate_map,
)
from dungeonsmith.layout.randomness import RandomnessSource

console_logger = logging.getLogger(__name__)


class PlacementError(Exception):
    """Raised when room placement fails."""


class NoCandidateFitsError(PlacementError):
    """No catalog candidate fits an open connector."""


class SearchExhaustedError(PlacementError):
    """Raised when the result of a failed search is unwrapped."""


class InvalidConfigError(ValueError):
    """Raised when a PlacementConfig is inconsistent."""


class _BudgetExceeded(PlacementError):
    def __init__(self, reason: "FailureReason"):
        super().__init__(reason.value)
        self.reason = reason


class SearchPhase(Enum):
    """State of a placement search."""

    SEEDING = "seeding"
    EXPANDING = "expanding"
    COMMITTED = "committed"
    BACKTRACKING = "backtracking"
    SUCCESS = "success"
    FAILURE = "failure"


class FailureReason(str, Enum):
    """Why a search ended without a map."""

    EXHAUSTED = "exhausted"
    """Every seed candidate was exhausted."""

    ATTEMPT_BUDGET = "attempt_budget"
    """``max_attempts`` candidate placements were tried."""

    TIMEOUT = "timeout"
    """``timeout_seconds`` elapsed."""

    WORKER_ERROR = "worker_error"
    """The run raised or its worker process died (batch generation only)."""


@dataclass
class PlacementConfig:
    """Configuration for the placement search."""

    target_rooms: int | None = 12
    """Stop once this many rooms are placed. None disables the room target."""

    target_area: int | None = None
    """Stop once the placed rooms cover at least this many tiles."""

    min_rooms: int = 1
    """Fewest rooms accepted when the frontier runs dry before the target."""

    max_attempts: int | None = 100_000
    """Candidate placements tried over the whole run before giving up."""

    timeout_seconds: float | None = None
    """Wall-clock budget for the whole run. None means no limit."""

    max_seed_retries: int = 8
    """How many seed candidates (template, rotation) to try before failing."""

    seal_unmatched: bool = False
    """Close connectors that nothing fits instead of backtracking.

    With sealing the search only backtracks when the frontier empties below
    ``min_rooms``. Sealed connectors are reopened if their frame is undone.
    """

    map_width: int | None = None
    """Map extent along X. Rooms must stay inside ``[0, map_width)``."""

    map_height: int | None = None
    """Map extent along Y. Rooms must stay inside ``[0, map_height)``."""

    validate_result: bool = True
    """Check overlaps, connectivity and port alignment before returning."""

    def validate(self) -> None:
        """Check that the configuration is usable.

        Raises:
            InvalidConfigError: If a value has the wrong type, no target is
                set, a budget is not positive, or the targets and bounds are
                inconsistent.
        """
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None and f.name in _OPTIONAL_CONFIG_FIELDS:
                continue
            expected = _CONFIG_FIELD_TYPES[f.name]
            # bool is an int subclass; it only counts for the bool fields.
            stray_bool = isinstance(value, bool) and expected is not bool
            if stray_bool or not isinstance(value, expected):
                raise InvalidConfigError(
                    f"{f.name} must be {_describe_type(expected)}, got {value!r}"
                )
        if self.target_rooms is None and self.target_area is None:
            raise InvalidConfigError("Set target_rooms, target_area, or both")
        if self.min_rooms < 1:
            raise InvalidConfigError(f"min_rooms must be at least 1, got {self.min_rooms}")
        if self.target_rooms is not None and self.target_rooms < self.min_rooms:
            raise InvalidConfigError(
                f"target_rooms ({self.target_rooms}) is below min_rooms "
                f"({self.min_rooms})"
            )
        if self.target_area is not None and self.target_area < 1:
            raise InvalidConfigError(f"target_area must be positive, got {self.target_area}")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise InvalidConfigError(
                f"max_attempts must be positive, got {self.max_attempts}"
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise InvalidConfigError(
                f"timeout_seconds must be positive, got {self.timeout_seconds}"
            )
        if self.max_seed_retries < 1:
            raise InvalidConfigError(
                f"max_seed_retries must be at least 1, got {self.max_seed_retries}"
            )
        if (self.map_width is None) != (self.map_height is None):
            raise InvalidConfigError("Set both map_width and map_height, or neither")
        if self.map_width is not None and (self.map_width < 1 or self.map_height < 1):
            raise InvalidConfigError(
                f"Map bounds must be at least 1x1, got {self.map_width}x{self.map_height}"
            )

    @property
    def map_bounds(self) -> Rect | None:
        if self.map_width is None or self.map_height is None:
            return None
        return Rect(min_x=0, min_y=0, max_x=self.map_width, max_y=self.map_height)


_CONFIG_FIELD_TYPES = {
    "target_rooms": int,
    "target_area": int,
    "min_rooms": int,
    "max_attempts": int,
    "timeout_seconds": (int, float),
    "max_seed_retries": int,
    "seal_unmatched": bool,
    "map_width": int,
    "map_height": int,
    "validate_result": bool,
}
_OPTIONAL_CONFIG_FIELDS = frozenset(
    {
        "target_rooms",
        "target_area",
        "max_attempts",
        "timeout_seconds",
        "map_width",
        "map_height",
    }
)


def _describe_type(expected) -> str:
    if expected is bool:
        return "a bool"
    if expected is int:
        return "an integer"
    return "a number"


@dataclass
class SearchStats:
    """Counters collected over one run."""

    attempts: int = 0
    """Candidate placements tried (aligned and checked)."""

    commits: int = 0
    """Rooms committed, including ones later undone."""

    backtracks: int = 0
    """Frames undone."""

    seals: int = 0
    """Connectors blocked because nothing fitted."""

    seeds_tried: int = 0
    max_depth: int = 0
    """Deepest frame stack seen."""

    elapsed_seconds: float = 0.0

    def to_dict(self) -> dict:
        return {
            "attempts": self.attempts,
            "commits": self.commits,
            "backtracks": self.backtracks,
            "seals": self.seals,
            "seeds_tried": self.seeds_tried,
            "max_depth": self.max_depth,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass
class GenerationResult:
    """Outcome of one generation run."""

    status: SearchPhase
    """SUCCESS or FAILURE."""

    seed: int
    """Seed of the run's RandomnessSource; replaying it reproduces the map."""

    map_graph: MapGraph | None = None
    """Frozen map on success, None on failure."""

    failure_reason: FailureReason | None = None
    stats: SearchStats = field(default_factory=SearchStats)
    error: str | None = None
    """Error text with traceback when the run itself broke."""

    @property
    def succeeded(self) -> bool:
        return self.status == SearchPhase.SUCCESS

    def unwrap(self) -> MapGraph:
        """Return the map.

        Raises:
            SearchExhaustedError: If the search failed.
        """
        if not self.succeeded or self.map_graph is None:
            reason = self.failure_reason.value if self.failure_reason else "unknown"
            raise SearchExhaustedError(
                f"Room placement failed for seed {self.seed} ({reason}) after "
                f"{self.stats.attempts} attempts"
            )
        return self.map_graph


class FrontierEntry(NamedTuple):
    """An open connector waiting for a neighbor."""

    room_id: int
    connector_index: int


@dataclass
class _Frame:
    """One expansion on the search stack."""

    entry: FrontierEntry
    candidates: list[CandidatePort]
    frontier_before: list[FrontierEntry]
    """Frontier right after ``entry`` was popped, restored on undo."""

    cursor: int = 0
    """Index of the next untried candidate."""

    committed: bool = False
    """A candidate room is currently committed for this frame."""

    sealed: bool = False
    """The connector is currently BLOCKED for this frame."""

    seal_used: bool = False


class PlacementSearch:
    """Explicit-stack depth-first search producing one MapGraph.

    A search object is single use: build it, call ``run()`` once.
    """

    def __init__(
        self,
        catalog: RoomCatalog,
        rng: RandomnessSource,
        config: PlacementConfig | None = None,
    ):
        self.catalog = catalog
        self.rng = rng
        self.config = config or PlacementConfig()
        self.config.validate()
        self.phase = SearchPhase.SEEDING
        self.stats = SearchStats()

        self.graph = MapGraph()
        self.index = RectKDTree()
        self.frontier: list[FrontierEntry] = []
        self.stack: list[_Frame] = []
        self._area = 0
        self._start_time = 0.0

    def run(self) -> GenerationResult:
        """Run the search to SUCCESS or FAILURE.

        Returns:
            The result; search dynamics never raise.
        """
        self._start_time = time.time()
        seeds = self.catalog.seed_choices()
        self.rng.shuffle(seeds)
        seeds = seeds[: self.config.max_seed_retries]

        reason = FailureReason.EXHAUSTED
        try:
            for template_id, rotation in seeds:
                self.stats.seeds_tried += 1
                self._reset()
                if not self._place_seed(template_id, rotation):
                    continue
                if self._search():
                    return self._finish_success()
                console_logger.debug(
                    f"Seed template {template_id} rotation {rotation} exhausted "
                    f"after {self.stats.attempts} attempts"
                )
        except _BudgetExceeded as e:
            reason = e.reason

        return self._finish_failure(reason)

    def _reset(self) -> None:
        self.graph = MapGraph()
        self.index.clear()
        self.frontier = []
        self.stack = []
        self._area = 0

    def _place_seed(self, template_id: int, rotation: int) -> bool:
        self.phase = SearchPhase.SEEDING
        view = self.catalog.template(template_id).rotated(rotation)
        bounds = self.config.map_bounds
        if bounds is None:
            origin = (0, 0)
        else:
            # Center the seed room in the map.
            origin = (
                (bounds.width - view.width) // 2,
                (bounds.height - view.height) // 2,
            )
            if not bounds.contains_rect(Rect.from_origin(origin, view.width, view.height)):
                console_logger.debug(
                    f"Seed template {template_id} ({view.width}x{view.height}) "
                    f"does not fit the {bounds.width}x{bounds.height} map"
                )
                return False

        self._add_room(template_id, rotation, origin)
        order = list(range(len(view.connectors)))
        self.rng.shuffle(order)
        self.frontier.extend(FrontierEntry(0, i) for i in order)
        return True

    def _search(self) -> bool:
        """Expand until the goal is met or the current seed is exhausted."""
        while True:
            if self._goal_reached():
                return True
            if not self.frontier and len(self.graph) >= self.config.min_rooms:
                return True
            self._check_budget()
            if not self.frontier:
                if not self._backtrack():
                    return False
                continue

            self.phase = SearchPhase.EXPANDING
            entry = self.frontier.pop()
            frame = _Frame(
                entry=entry,
                candidates=self._ordered_candidates(entry),
                frontier_before=list(self.frontier),
            )
            self.stack.append(frame)
            self.stats.max_depth = max(self.stats.max_depth, len(self.stack))
            try:
                self._advance(frame)
            except NoCandidateFitsError:
                self.stack.pop()
                if not self._backtrack():
                    return False

    def _backtrack(self) -> bool:
        """Undo frames until one can advance.

        Returns:
            False if the stack ran empty.
        """
        self.phase = SearchPhase.BACKTRACKING
        while self.stack:
            frame = self.stack[-1]
            self._undo(frame)
            try:
                self._advance(frame)
                return True
            except NoCandidateFitsError:
                self.stack.pop()
        return False

    def _ordered_candidates(self, entry: FrontierEntry) -> list[CandidatePort]:
        room = self.graph.room(entry.room_id)
        connector = room.connectors[entry.connector_index]
        ports = self.catalog.candidates_for(connector.side, connector.width)
        return [ports[i] for i in self.rng.permutation(len(ports))]

    def _advance(self, frame: _Frame) -> None:
        """Commit the frame's next fitting candidate, or seal its connector.

        Raises:
            NoCandidateFitsError: If the frame has nothing left to try.
        """
        target = self.graph.room(frame.entry.room_id).world_port(
            frame.entry.connector_index
        )
        while frame.cursor < len(frame.candidates):
            port = frame.candidates[frame.cursor]
            frame.cursor += 1
            origin = self._try_candidate(port, target)
            if origin is not None:
                self._commit(frame, port, origin)
                return

        if self.config.seal_unmatched and not frame.seal_used:
            self.graph.set_connector_state(
                frame.entry.room_id, frame.entry.connector_index, ConnectorState.BLOCKED
            )
            frame.sealed = True
            frame.seal_used = True
            self.stats.seals += 1
            return

        raise NoCandidateFitsError(
            f"Nothing fits connector {frame.entry.connector_index} of room "
            f"{frame.entry.room_id}"
        )

    def _try_candidate(self, port: CandidatePort, target: Segment) -> tuple[int, int] | None:
        self._check_budget()
        self.stats.attempts += 1
        view = self.catalog.template(port.template_id).rotated(port.rotation)
        connector = view.connectors[port.connector_index]
        origin = align_origin(
            target=target,
            room_width=view.width,
            room_height=view.height,
            port_offset=connector.offset,
        )
        rect = Rect.from_origin(origin, view.width, view.height)
        bounds = self.config.map_bounds
        if bounds is not None and not bounds.contains_rect(rect):
            return None
        if self.index.overlaps(rect):
            return None
        return origin

    def _add_room(self, template_id: int, rotation: int, origin: tuple[int, int]) -> PlacedRoom:
        view = self.catalog.template(template_id).rotated(rotation)
        room = PlacedRoom(
            room_id=len(self.graph),
            template_id=template_id,
            rotation=rotation,
            origin=origin,
            width=view.width,
            height=view.height,
            connectors=view.connectors,
        )
        self.graph.add_room(room)
        self.index.insert(room.rect, key=room.room_id)
        self._area += room.area
        return room

    def _commit(self, frame: _Frame, port: CandidatePort, origin: tuple[int, int]) -> None:
        self.phase = SearchPhase.COMMITTED
        room = self._add_room(port.template_id, port.rotation, origin)
        self.graph.add_link(
            frame.entry.room_id, frame.entry.connector_index, room.room_id, port.connector_index
        )
        frame.committed = True
        self.stats.commits += 1

        others = [i for i in range(len(room.connectors)) if i != port.connector_index]
        self.rng.shuffle(others)
        self.frontier.extend(FrontierEntry(room.room_id, i) for i in others)

    def _undo(self, frame: _Frame) -> None:
        """Revert whatever the frame currently holds and restore the frontier."""
        if frame.committed:
            self.graph.pop_link()
            room = self.graph.room(len(self.graph) - 1)
            if not self.index.remove(room.rect, key=room.room_id):
                raise PlacementError(f"Room {room.room_id} missing from spatial index")
            self.graph.pop_room()
            self._area -= room.area
            frame.committed = False
            self.stats.backtracks += 1
        elif frame.sealed:
            self.graph.set_connector_state(
                frame.entry.room_id, frame.entry.connector_index, ConnectorState.OPEN
            )
            frame.sealed = False
            self.stats.backtracks += 1
        self.frontier = list(frame.frontier_before)

    def _goal_reached(self) -> bool:
        target_rooms = self.config.target_rooms
        target_area = self.config.target_area
        if target_rooms is not None and len(self.graph) >= target_rooms:
            return True
        return target_area is not None and self._area >= target_area

    def _check_budget(self) -> None:
        max_attempts = self.config.max_attempts
        if max_attempts is not None and self.stats.attempts >= max_attempts:
            raise _BudgetExceeded(FailureReason.ATTEMPT_BUDGET)
        timeout = self.config.timeout_seconds
        if timeout is not None and time.time() - self._start_time > timeout:
            raise _BudgetExceeded(FailureReason.TIMEOUT)

    def _finish_success(self) -> GenerationResult:
        # Whatever is still open is terminal now.
        for room in self.graph.rooms:
            for i in room.open_connectors():
                self.graph.set_connector_state(room.room_id, i, ConnectorState.BLOCKED)

        if self.config.validate_result:
            problems = validate_map(self.graph, require_closed=True)
            if problems:
                raise PlacementError(
                    f"Generated map failed validation: {'; '.join(problems)}"
                )

        self.graph.freeze()
        self.phase = SearchPhase.SUCCESS
        self.stats.elapsed_seconds = time.time() - self._start_time
        console_logger.info(
            f"Placed {len(self.graph)} rooms (area {self.graph.total_area()}) for "
            f"seed {self.rng.seed} in {self.stats.elapsed_seconds:.2f}s "
            f"(attempts={self.stats.attempts}, backtracks={self.stats.backtracks}, "
            f"seals={self.stats.seals}, seeds={self.stats.seeds_tried})"
        )
        return GenerationResult(
            status=SearchPhase.SUCCESS,
            seed=self.rng.seed,
            map_graph=self.graph,
            stats=self.stats,
        )

    def _finish_failure(self, reason: FailureReason) -> GenerationResult:
        self.phase = SearchPhase.FAILURE
        self.stats.elapsed_seconds = time.time() - self._start_time
        console_logger.warning(
            f"Room placement failed for seed {self.rng.seed} ({reason.value}) after "
            f"{self.stats.elapsed_seconds:.2f}s, {self.stats.attempts} attempts and "
            f"{self.stats.seeds_tried} seeds"
        )
        # Discard the partial map.
        self._reset()
        return GenerationResult(
            status=SearchPhase.FAILURE,
            seed=self.rng.seed,
            failure_reason=reason,
            stats=self.stats,
        )


def generate_map(
    catalog: RoomCatalog,
    seed: int | None = None,
    config: PlacementConfig | None = None,
) -> GenerationResult:
    """Generate one room layout.

    Args:
        catalog: Templates to place.
        seed: Seed for the run. If None, fresh entropy is drawn and reported in
            the result.
        config: Search configuration. Defaults to PlacementConfig().

    Returns:
        GenerationResult with a frozen MapGraph on success.

    Raises:
        InvalidConfigError: If the configuration is inconsistent.
    """
    rng = RandomnessSource(seed)
    search = PlacementSearch(catalog=catalog, rng=rng, config=config)
    return search.run()
