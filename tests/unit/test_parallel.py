"""Tests for isolated batch generation."""

import os
import signal
import unittest

from dungeonsmith.layout.placement_search import (
    FailureReason,
    PlacementConfig,
    SearchPhase,
    generate_map,
)
from dungeonsmith.utils.parallel import generate_maps_parallel
from tests.unit.layout_helpers import dead_end_catalog, hall_and_alcove_catalog


def _raise_on_seed_two(catalog, seed, config):
    if seed == 2:
        raise ValueError("broken catalog")
    return generate_map(catalog, seed=seed, config=config)


def _killed_on_seed_two(catalog, seed, config):
    """Simulates an OOM kill for one seed."""
    if seed == 2:
        os.kill(os.getpid(), signal.SIGKILL)
    return generate_map(catalog, seed=seed, config=config)


class TestGenerateMapsParallel(unittest.TestCase):
    """Tests for batch generation over seeds."""

    def test_matches_serial_generation(self):
        catalog = hall_and_alcove_catalog()
        config = PlacementConfig(target_rooms=2)
        results = generate_maps_parallel(
            seeds=[3, 1, 3], catalog=catalog, config=config, max_workers=2
        )

        self.assertEqual(list(results), [3, 1])
        for seed, result in results.items():
            assert result.succeeded
            self.assertEqual(result.seed, seed)
            serial = generate_map(catalog, seed=seed, config=config)
            self.assertEqual(
                result.map_graph.content_hash(), serial.map_graph.content_hash()
            )
            assert result.map_graph.frozen

    def test_failed_search_is_returned_as_is(self):
        results = generate_maps_parallel(
            seeds=[0], catalog=dead_end_catalog(), max_workers=1
        )
        self.assertEqual(results[0].status, SearchPhase.FAILURE)
        self.assertEqual(results[0].failure_reason, FailureReason.EXHAUSTED)
        self.assertIsNone(results[0].error)

    def test_exception_only_fails_its_seed(self):
        results = generate_maps_parallel(
            seeds=[1, 2],
            catalog=hall_and_alcove_catalog(),
            config=PlacementConfig(target_rooms=2),
            max_workers=2,
            generator=_raise_on_seed_two,
        )
        assert results[1].succeeded
        failed = results[2]
        self.assertEqual(failed.status, SearchPhase.FAILURE)
        self.assertEqual(failed.failure_reason, FailureReason.WORKER_ERROR)
        self.assertEqual(failed.seed, 2)
        self.assertIn("broken catalog", failed.error)
        self.assertIn("Traceback", failed.error)

    def test_crash_only_fails_its_seed(self):
        results = generate_maps_parallel(
            seeds=[2, 1],
            catalog=hall_and_alcove_catalog(),
            config=PlacementConfig(target_rooms=2),
            max_workers=1,
            generator=_killed_on_seed_two,
        )
        assert results[1].succeeded
        crashed = results[2]
        self.assertEqual(crashed.failure_reason, FailureReason.WORKER_ERROR)
        self.assertIsNone(crashed.map_graph)
        self.assertIn("died", crashed.error)
        self.assertIn("SIGKILL", crashed.error)

    def test_empty_and_invalid(self):
        self.assertEqual(
            generate_maps_parallel(seeds=[], catalog=hall_and_alcove_catalog()), {}
        )
        with self.assertRaises(ValueError):
            generate_maps_parallel(
                seeds=[1], catalog=hall_and_alcove_catalog(), max_workers=0
            )


if __name__ == "__main__":
    unittest.main()
