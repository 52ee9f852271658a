"""Tests for the backtracking placement search."""

import itertools
import unittest

from unittest import mock

from dungeonsmith.layout.default_rooms import default_catalog
from dungeonsmith.layout.geometry import Rect
from dungeonsmith.layout.map_graph import ConnectorLink, ConnectorState, validate_map
from dungeonsmith.layout.placement_search import (
    FailureReason,
    InvalidConfigError,
    PlacementConfig,
    PlacementSearch,
    SearchExhaustedError,
    SearchPhase,
    generate_map,
)
from dungeonsmith.layout.randomness import RandomnessSource
from tests.unit.layout_helpers import (
    assert_index_matches_graph,
    dead_end_catalog,
    detour_catalog,
    hall_and_alcove_catalog,
)


class _CheckedSearch(PlacementSearch):
    """Search that checks index/graph consistency after every commit and undo."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.commit_checks = 0
        self.undo_checks = 0

    def _commit(self, frame, port, origin):
        super()._commit(frame, port, origin)
        assert_index_matches_graph(self)
        self.commit_checks += 1

    def _undo(self, frame):
        super()._undo(frame)
        assert_index_matches_graph(self)
        self.undo_checks += 1


class _CatalogOrderRandomness(RandomnessSource):
    """Keeps every draw in catalog order so a run follows a fixed path."""

    def permutation(self, n: int) -> list[int]:
        return list(range(n))


class TestBacktrackingRecovery(unittest.TestCase):
    """A dead end below the first commit is rolled back and the search recovers.

    With catalog order, the hall's south door first takes the nook at (0, 4).
    The nook's east door has no candidates, so that frame fails, the nook is
    undone, and the shaft goes to (0, 4) instead. The nook then fits under the
    shaft at (0, 6).
    """

    def _run(self, **overrides):
        values = dict(target_rooms=3, min_rooms=3)
        values.update(overrides)
        search = _CheckedSearch(
            catalog=detour_catalog(),
            rng=_CatalogOrderRandomness(0),
            config=PlacementConfig(**values),
        )
        return search, search.run()

    def _assert_recovered_layout(self, result):
        assert result.succeeded
        graph = result.map_graph
        self.assertEqual([room.origin for room in graph.rooms], [(0, 0), (0, 4), (0, 6)])
        self.assertEqual([room.template_id for room in graph.rooms], [2, 1, 0])
        self.assertEqual(
            graph.links,
            (ConnectorLink(0, 0, 1, 0), ConnectorLink(1, 1, 2, 0)),
        )
        self.assertEqual(validate_map(graph, require_closed=True), [])

    def test_dead_end_is_undone(self):
        search, result = self._run()
        self._assert_recovered_layout(result)
        self.assertEqual(search.undo_checks, 1)
        self.assertEqual(search.commit_checks, 3)
        self.assertEqual(result.stats.backtracks, 1)
        self.assertEqual(result.stats.attempts, 3)
        # The nook's east door was never filled.
        self.assertEqual(
            result.map_graph.room(2).connector_states,
            (ConnectorState.MATCHED, ConnectorState.BLOCKED),
        )

    def test_seal_is_reopened_when_rooms_fall_short(self):
        # Sealing the nook leaves two rooms and an empty frontier, below
        # min_rooms, so the seal and then the nook are both undone.
        search, result = self._run(seal_unmatched=True)
        self._assert_recovered_layout(result)
        self.assertEqual(search.undo_checks, 2)
        self.assertEqual(result.stats.seals, 1)
        self.assertEqual(result.stats.backtracks, 2)
        self.assertEqual(result.stats.attempts, 3)


class TestHallAndAlcove(unittest.TestCase):
    """The 4x4 hall / 3x3 alcove example."""

    def test_alcove_attached_below_hall(self):
        config = PlacementConfig(target_rooms=2)
        result = generate_map(hall_and_alcove_catalog(), seed=1, config=config)

        assert result.succeeded
        graph = result.unwrap()
        self.assertEqual(len(graph), 2)
        hall, alcove = graph.rooms
        self.assertEqual(hall.origin, (0, 0))
        self.assertEqual(alcove.origin, (1, 4))
        self.assertEqual(alcove.rect, Rect(1, 4, 4, 7))
        self.assertEqual(graph.links, (ConnectorLink(0, 0, 1, 0),))
        self.assertEqual(hall.connector_states, (ConnectorState.MATCHED,))
        self.assertEqual(alcove.connector_states, (ConnectorState.MATCHED,))
        assert graph.frozen
        self.assertEqual(result.stats.attempts, 1)
        self.assertEqual(result.stats.commits, 1)

    def test_target_area_goal(self):
        config = PlacementConfig(target_rooms=None, target_area=20)
        result = generate_map(hall_and_alcove_catalog(), seed=3, config=config)
        assert result.succeeded
        self.assertEqual(result.map_graph.total_area(), 25)

    def test_empty_frontier_succeeds_above_min_rooms(self):
        config = PlacementConfig(target_rooms=5, min_rooms=2)
        result = generate_map(hall_and_alcove_catalog(), seed=0, config=config)
        assert result.succeeded
        self.assertEqual(len(result.map_graph), 2)

    def test_empty_frontier_below_min_rooms_backtracks_to_exhaustion(self):
        config = PlacementConfig(target_rooms=5, min_rooms=3)
        search = _CheckedSearch(
            catalog=hall_and_alcove_catalog(), rng=RandomnessSource(0), config=config
        )
        result = search.run()

        self.assertEqual(result.status, SearchPhase.FAILURE)
        self.assertEqual(result.failure_reason, FailureReason.EXHAUSTED)
        self.assertIsNone(result.map_graph)
        self.assertEqual(result.stats.backtracks, 1)
        self.assertEqual(search.undo_checks, 1)
        self.assertEqual(len(search.index), 0)
        with self.assertRaises(SearchExhaustedError):
            result.unwrap()


class TestExhaustion(unittest.TestCase):
    """Failures are reported as results, never raised from run()."""

    def test_no_compatible_candidate(self):
        result = generate_map(dead_end_catalog(), seed=5, config=PlacementConfig())
        assert not result.succeeded
        self.assertEqual(result.failure_reason, FailureReason.EXHAUSTED)
        self.assertEqual(result.stats.attempts, 0)
        self.assertEqual(result.stats.seeds_tried, 1)

    def test_sealing_closes_dead_ends(self):
        config = PlacementConfig(target_rooms=3, seal_unmatched=True)
        result = generate_map(dead_end_catalog(), seed=5, config=config)
        assert result.succeeded
        graph = result.map_graph
        self.assertEqual(len(graph), 1)
        self.assertEqual(graph.room(0).connector_states, (ConnectorState.BLOCKED,))
        self.assertEqual(result.stats.seals, 1)

    def test_seed_larger_than_map(self):
        config = PlacementConfig(map_width=5, map_height=5, max_seed_retries=8)
        result = generate_map(default_catalog(), seed=2, config=config)
        self.assertEqual(result.failure_reason, FailureReason.EXHAUSTED)
        # Four rotations of the single anchor.
        self.assertEqual(result.stats.seeds_tried, 4)

    def test_attempt_budget(self):
        config = PlacementConfig(target_rooms=200, max_attempts=50)
        result = generate_map(default_catalog(), seed=11, config=config)
        self.assertEqual(result.failure_reason, FailureReason.ATTEMPT_BUDGET)
        self.assertEqual(result.stats.attempts, 50)

    def test_timeout(self):
        config = PlacementConfig(
            target_rooms=500, seal_unmatched=True, timeout_seconds=5.0
        )
        with mock.patch("dungeonsmith.layout.placement_search.time") as fake_time:
            fake_time.time.side_effect = itertools.count(0.0, 1.0)
            result = generate_map(default_catalog(), seed=4, config=config)
        self.assertEqual(result.failure_reason, FailureReason.TIMEOUT)


class TestDefaultCatalogLayouts(unittest.TestCase):
    """Structural guarantees on layouts from the built-in rooms."""

    def _config(self, **overrides) -> PlacementConfig:
        values = dict(target_rooms=15, seal_unmatched=True, max_attempts=None)
        values.update(overrides)
        return PlacementConfig(**values)

    def test_no_overlap_connected_and_aligned(self):
        for seed in (1, 2, 3):
            with self.subTest(seed=seed):
                result = generate_map(default_catalog(), seed=seed, config=self._config())
                assert result.succeeded
                graph = result.map_graph
                self.assertEqual(validate_map(graph, require_closed=True), [])
                assert graph.is_connected()
                self.assertEqual(len(graph.links), len(graph) - 1)
                rects = [room.rect for room in graph.rooms]
                for a, b in itertools.combinations(rects, 2):
                    assert not a.overlaps(b)

    def test_same_seed_same_map(self):
        first = generate_map(default_catalog(), seed=99, config=self._config())
        second = generate_map(default_catalog(), seed=99, config=self._config())
        assert first.succeeded and second.succeeded
        self.assertEqual(first.map_graph.content_hash(), second.map_graph.content_hash())
        self.assertEqual(first.stats.attempts, second.stats.attempts)

    def test_unseeded_run_is_replayable(self):
        first = generate_map(default_catalog(), config=self._config(target_rooms=8))
        replay = generate_map(
            default_catalog(), seed=first.seed, config=self._config(target_rooms=8)
        )
        self.assertEqual(first.map_graph.content_hash(), replay.map_graph.content_hash())

    def test_rooms_stay_inside_bounds(self):
        config = self._config(target_rooms=10, map_width=40, map_height=40)
        result = generate_map(default_catalog(), seed=8, config=config)
        assert result.succeeded
        bounds = Rect(0, 0, 40, 40)
        # The 10x10 start cavern is centered.
        self.assertEqual(result.map_graph.room(0).origin, (15, 15))
        for room in result.map_graph.rooms:
            assert bounds.contains_rect(room.rect)

    def test_index_mirrors_graph_during_backtracking(self):
        config = PlacementConfig(target_rooms=10, max_attempts=20_000)
        search = _CheckedSearch(
            catalog=default_catalog(), rng=RandomnessSource(21), config=config
        )
        result = search.run()
        self.assertGreater(search.commit_checks, 0)
        if result.succeeded:
            self.assertEqual(validate_map(result.map_graph, require_closed=True), [])


class TestPlacementConfig(unittest.TestCase):
    """Inconsistent configurations are rejected up front."""

    def test_invalid_configs(self):
        cases = [
            dict(target_rooms=None, target_area=None),
            dict(min_rooms=0),
            dict(target_rooms=2, min_rooms=3),
            dict(max_attempts=0),
            dict(timeout_seconds=0),
            dict(max_seed_retries=0),
            dict(map_width=10),
            dict(map_width=0, map_height=4),
            dict(target_area=0),
        ]
        for values in cases:
            with self.subTest(values=values):
                with self.assertRaises(InvalidConfigError):
                    generate_map(hall_and_alcove_catalog(), seed=0, config=PlacementConfig(**values))

    def test_map_bounds(self):
        self.assertIsNone(PlacementConfig().map_bounds)
        self.assertEqual(
            PlacementConfig(map_width=8, map_height=6).map_bounds, Rect(0, 0, 8, 6)
        )


if __name__ == "__main__":
    unittest.main()
