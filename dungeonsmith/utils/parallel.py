"""Batch generation of many seeds in isolated worker processes.

Each seed gets a fresh process, so a run that crashes (segfault, OOM kill) or
raises only fails its own seed and the rest of the batch keeps going. Workers
always report a GenerationResult; the parent only builds one itself when a
worker died before reporting.
"""

import logging
import multiprocessing
import queue
import signal
import traceback

from collections import deque
from multiprocessing.connection import wait
from typing import Callable

from dungeonsmith.layout.catalog import RoomCatalog
from dungeonsmith.layout.placement_search import (
    FailureReason,
    GenerationResult,
    PlacementConfig,
    SearchPhase,
    generate_map,
)

console_logger = logging.getLogger(__name__)

Generator = Callable[..., GenerationResult]


def _describe_exit(exit_code: int | None) -> str:
    """Exit code text, with the signal name when the process was killed."""
    if exit_code is None or exit_code >= 0:
        return f"exitcode={exit_code}"
    try:
        return f"exitcode={exit_code} ({signal.Signals(-exit_code).name})"
    except ValueError:
        return f"exitcode={exit_code}"


def _worker_error(seed: int, error: str) -> GenerationResult:
    return GenerationResult(
        status=SearchPhase.FAILURE,
        seed=seed,
        failure_reason=FailureReason.WORKER_ERROR,
        error=error,
    )


def _generate_in_worker(
    generator: Generator,
    catalog: RoomCatalog,
    seed: int,
    config: PlacementConfig | None,
    reports: multiprocessing.Queue,
) -> None:
    # Forked workers must not write into the parent's log files.
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()

    try:
        result = generator(catalog=catalog, seed=seed, config=config)
    except Exception as e:
        console_logger.error(f"Generation for seed {seed} raised: {e}")
        result = _worker_error(seed, f"{e}\n{traceback.format_exc()}")
    reports.put((seed, result))


def generate_maps_parallel(
    seeds: list[int],
    catalog: RoomCatalog,
    config: PlacementConfig | None = None,
    max_workers: int = 4,
    generator: Generator = generate_map,
) -> dict[int, GenerationResult]:
    """Generate one map per seed, each in its own process.

    Args:
        seeds: Seeds to generate; duplicates are generated once.
        catalog: Shared room catalog.
        config: Search configuration for every run.
        max_workers: Maximum number of concurrent processes.
        generator: Called as ``generator(catalog=, seed=, config=)`` in the
            worker. Must be importable from a module so workers can load it.

    Returns:
        Dict mapping each seed to its GenerationResult, in first-seen seed
        order. Runs that raised or whose process died are FAILURE results with
        reason WORKER_ERROR and the traceback or exit status as ``error``.

    Raises:
        ValueError: If max_workers is below 1.
        InvalidConfigError: If the configuration is inconsistent.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be at least 1, got {max_workers}")
    if config is not None:
        config.validate()

    unique_seeds = list(dict.fromkeys(seeds))
    waiting = deque(unique_seeds)
    running: dict[int, multiprocessing.Process] = {}
    results: dict[int, GenerationResult] = {}
    reports: multiprocessing.Queue = multiprocessing.Queue()

    def collect_reports() -> None:
        while True:
            try:
                seed, result = reports.get_nowait()
            except queue.Empty:
                return
            results[seed] = result

    while waiting or running:
        while waiting and len(running) < max_workers:
            seed = waiting.popleft()
            process = multiprocessing.Process(
                target=_generate_in_worker,
                args=(generator, catalog, seed, config, reports),
            )
            process.start()
            running[seed] = process
            console_logger.debug(f"Seed {seed} started (pid={process.pid})")

        # Reading reports while waiting lets workers flush large results.
        wait([p.sentinel for p in running.values()], timeout=1.0)
        collect_reports()

        for seed, process in list(running.items()):
            if process.is_alive():
                continue
            process.join()
            del running[seed]
            if seed not in results:
                collect_reports()
            if seed not in results:
                exit_text = _describe_exit(process.exitcode)
                console_logger.error(f"Worker for seed {seed} died ({exit_text})")
                results[seed] = _worker_error(seed, f"Worker died ({exit_text})")

    succeeded = sum(1 for r in results.values() if r.succeeded)
    console_logger.info(f"Generated {succeeded}/{len(unique_seeds)} maps")
    return {seed: results[seed] for seed in unique_seeds}
