"""Benchmark scheduling loop.

One control thread alternates between filling free pool slots from the
latest status snapshot and polling solver processes for completion.
Cancellation is cooperative: the token is checked at the top of each
cycle and before sleeping, and tracked children are always drained before
the final report.
"""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable

from punter_bench import report as rpt
from punter_bench.allocator import allocate, prepare_list
from punter_bench.config import BenchmarkRun, ConfigError
from punter_bench.outcome import GameResult, MalformedOutputError, archive_loose_log, score_file
from punter_bench.process_pool import (
    Game,
    GameError,
    GameStatus,
    ProcessPool,
    SpawnError,
    UnknownProcessError,
)
from punter_bench.status_client import (
    FetchError,
    ServerSlot,
    StatusClient,
    StatusSnapshot,
    fetch_snapshot_with_retry,
)

logger = logging.getLogger(__name__)


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Orchestrator:
    def __init__(
        self,
        run: BenchmarkRun,
        status_client: StatusClient | None = None,
        pool: ProcessPool | None = None,
        cancel: CancelToken | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_flush: Callable[[rpt.Report], None] | None = None,
    ):
        self.run = run
        self.status_client = status_client or StatusClient.from_run(run)
        self.pool = pool or ProcessPool.from_run(run)
        self.cancel = cancel or CancelToken()
        self.sleep = sleep
        self.clock = clock
        self.on_flush = on_flush or rpt.print_report
        self.report: rpt.Report | None = None
        self.slots: list[ServerSlot] = []
        self._last_flush = 0.0

    def request_stop(self) -> None:
        logger.info("Got INTERRUPT. Finalizing...")
        self.cancel.cancel()

    def _fetch_snapshot(self) -> StatusSnapshot | None:
        try:
            snapshot = fetch_snapshot_with_retry(
                self.status_client,
                retries=self.run.fetch_retries,
                backoff_sec=self.run.fetch_backoff_sec,
                log=logger,
                sleep=self.sleep,
            )
        except FetchError as exc:
            logger.warning("Status fetch gave up after %d attempts: %s", self.run.fetch_retries, exc)
            return None
        return snapshot

    def refresh_snapshot(self) -> None:
        snapshot = self._fetch_snapshot()
        if snapshot is None:
            logger.warning("Keeping last known-good snapshot (%d free slots)", len(self.slots))
            return
        self.slots = prepare_list(snapshot.servers)
        logger.debug("Snapshot: %d servers, %d joinable", len(snapshot.servers), len(self.slots))

    def resolve_maps(self, snapshot: StatusSnapshot | None) -> list[str]:
        if not self.run.wants_all_maps:
            return list(self.run.maps)
        if snapshot is None:
            raise ConfigError("unable to resolve ALL maps: status page unavailable")
        maps = snapshot.map_ids()
        if not maps:
            raise ConfigError("unable to resolve ALL maps: status page lists no servers")
        return maps

    def start(self) -> rpt.Report:
        snapshot = self._fetch_snapshot()
        maps = self.resolve_maps(snapshot)
        self.run = self.run.with_maps(maps)
        self.report = rpt.Report.create(list(self.run.maps), self.run.rounds)
        self.slots = prepare_list(snapshot.servers) if snapshot else []
        self._last_flush = self.clock()
        logger.info(
            "Benchmark: maps=%s rounds=%d parallel=%d",
            ",".join(self.run.maps),
            self.run.rounds,
            self.run.parallel,
        )
        return self.report

    def allocate_next_game(self) -> tuple[str, ServerSlot] | None:
        for map_id in self.report.pending_maps():
            slot = allocate(
                self.slots,
                map_id,
                punter_name=self.run.punter_name,
                avoid_eager=self.run.avoid_eager,
                eager_name=self.run.eager_name,
            )
            # No free server for the map.
            if slot is None:
                continue
            self.report.consume_round(map_id)
            return map_id, slot
        return None

    def fill_pool(self) -> int:
        spawned = 0
        while self.pool.has_capacity and not self.cancel.cancelled:
            picked = self.allocate_next_game()
            if picked is None:
                break
            map_id, slot = picked
            try:
                self.pool.spawn(map_id, slot)
            except SpawnError:
                # The game never started; the error still ends the run.
                self.report.release_round(map_id)
                raise
            spawned += 1
        return spawned

    def _score(self, game: Game) -> None:
        if game.status != GameStatus.OK:
            raise GameError(game.error or "game failed")
        try:
            outcome = score_file(game.output_path)
        except MalformedOutputError as exc:
            raise GameError(f"malformed output: {exc}") from exc
        game.apply_outcome(outcome)

    def settle(self, game: Game) -> None:
        """Score a reaped game, record it and drop its capture file."""
        try:
            self._score(game)
        except GameError as exc:
            game.mark_error(str(exc))
            logger.warning("[%d] Game finished: error (%s)", game.pid, exc)
        else:
            logger.info(
                "[%d] Game finished: ok: Score: %d, meta-score: %d -> %s",
                game.pid,
                game.my_score,
                game.my_meta_score,
                game.result.value,
            )
        if game.result == GameResult.LOOSE and self.run.loose_dir:
            try:
                archive_loose_log(game.output_path, self.run.loose_dir, game.map_id, game.pid)
            except OSError as exc:
                logger.warning("[%d] Unable to save loose game log: %s", game.pid, exc)
        Path(game.output_path).unlink(missing_ok=True)
        rpt.update(self.report, game)

    def drain(self) -> int:
        completed = 0
        for pid, exit_status in self.pool.reap_completed():
            try:
                game = self.pool.finish(pid, exit_status)
            except UnknownProcessError as exc:
                logger.warning("%s. Ignoring...", exc)
                continue
            self.settle(game)
            completed += 1
        return completed

    def maybe_flush(self) -> None:
        interval = self.run.flush_interval_sec
        if interval <= 0:
            return
        now = self.clock()
        if now - self._last_flush < interval:
            return
        self._last_flush = now
        rpt.finalize(self.report)
        self.on_flush(self.report)

    def _wait_cycle(self, refetch: bool) -> None:
        self.sleep(self.run.poll_interval_sec)
        if refetch and not self.cancel.cancelled:
            self.refresh_snapshot()

    def loop(self) -> None:
        while not self.cancel.cancelled and not rpt.is_complete(self.report):
            self.fill_pool()
            completed = self.drain()
            self.maybe_flush()
            if completed:
                continue
            if self.cancel.cancelled:
                break
            self._wait_cycle(refetch=True)

    def wait_all(self) -> None:
        while len(self.pool):
            if self.drain():
                continue
            self.sleep(self.run.poll_interval_sec)
            self.maybe_flush()

    def execute(self) -> rpt.Report:
        if self.report is None:
            self.start()
        try:
            while True:
                self.loop()
                if self.cancel.cancelled or not len(self.pool):
                    break
                # Every round is allocated; late errors may still credit one back.
                if self.drain():
                    continue
                self._wait_cycle(refetch=True)
                self.maybe_flush()
        finally:
            if len(self.pool):
                logger.info("Waiting for %d running game(s) to finish...", len(self.pool))
                self.wait_all()
            rpt.finalize(self.report)
        return self.report
