from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from punter_bench.outcome import GameResult, Outcome
from punter_bench.status_client import ServerSlot

logger = logging.getLogger(__name__)


class SpawnError(RuntimeError):
    pass


class UnknownProcessError(RuntimeError):
    pass


class GameError(RuntimeError):
    pass


class GameStatus(str, Enum):
    RUNNING = "running"
    OK = "ok"
    ERROR = "error"


@dataclass
class Game:
    map_id: str
    slot: ServerSlot
    pid: int = -1
    output_path: str = ""
    status: GameStatus = GameStatus.RUNNING
    players: int = -1
    my_punter_id: int = -1
    max_score: int = 0
    my_score: int = 0
    my_meta_score: int = 0
    result: GameResult | None = None
    error: str | None = None
    exit_status: int | None = None
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    def apply_outcome(self, outcome: Outcome) -> None:
        self.players = outcome.players
        self.my_punter_id = outcome.my_punter_id
        self.max_score = outcome.max_score
        self.my_score = outcome.my_score
        self.my_meta_score = outcome.my_meta_score
        self.result = outcome.result

    def mark_error(self, reason: str) -> None:
        self.status = GameStatus.ERROR
        self.error = reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "map": self.map_id,
            "port": self.slot.port,
            "pid": self.pid,
            "status": self.status.value,
            "players": self.players,
            "playerIndex": self.my_punter_id,
            "maxScore": self.max_score,
            "score": self.my_score,
            "metaScore": self.my_meta_score,
            "result": self.result.value if self.result else None,
            "error": self.error,
            "exitStatus": self.exit_status,
            "durationSec": None if self.finished_at is None else round(self.finished_at - self.started_at, 3),
        }


class ProcessPool:
    """Solver processes keyed by pid, reaped by non-blocking polls."""

    def __init__(
        self,
        solver: str,
        max_concurrent: int,
        solver_args: tuple[str, ...] = (),
        solver_env: dict[str, str] | None = None,
        quiet: bool = True,
        tmp_dir: str | None = None,
    ):
        self.solver = solver
        self.max_concurrent = max_concurrent
        self.solver_args = tuple(solver_args)
        self.solver_env = dict(solver_env or {})
        self.quiet = quiet
        self.tmp_dir = tmp_dir
        self._procs: dict[int, subprocess.Popen] = {}
        self._games: dict[int, Game] = {}

    @classmethod
    def from_run(cls, run) -> ProcessPool:
        return cls(
            solver=run.solver,
            max_concurrent=run.parallel,
            solver_args=run.solver_args,
            solver_env=run.solver_env,
            quiet=run.solver_quiet,
            tmp_dir=run.tmp_dir,
        )

    def __len__(self) -> int:
        return len(self._games)

    @property
    def has_capacity(self) -> bool:
        return len(self._games) < self.max_concurrent

    @property
    def games(self) -> list[Game]:
        return list(self._games.values())

    def build_cmd(self, port: int, output_path: str) -> list[str]:
        return [self.solver, *self.solver_args, str(port), output_path]

    def spawn(self, map_id: str, slot: ServerSlot) -> Game:
        fd, output_path = tempfile.mkstemp(prefix="game", dir=self.tmp_dir)
        os.close(fd)
        cmd = self.build_cmd(slot.port, output_path)

        launch_env = os.environ.copy()
        launch_env.update(self.solver_env)
        popen_kwargs: dict[str, Any] = dict(env=launch_env)
        if self.quiet:
            popen_kwargs["stdout"] = subprocess.DEVNULL
            popen_kwargs["stderr"] = subprocess.DEVNULL
        if os.name == "nt":
            popen_kwargs["creationflags"] = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        else:
            # Keep the terminal's Ctrl-C away from running games.
            popen_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(cmd, **popen_kwargs)
        except OSError as exc:
            Path(output_path).unlink(missing_ok=True)
            cmd_text = subprocess.list2cmdline(cmd)
            raise SpawnError(f"failed to start solver; cmd={cmd_text}; error={exc}") from exc

        game = Game(map_id=map_id, slot=slot, pid=proc.pid, output_path=output_path)
        self._procs[proc.pid] = proc
        self._games[proc.pid] = game
        logger.info("[%d] Run a game on port %d, map: %s => %s...", proc.pid, slot.port, map_id, output_path)
        return game

    def reap_completed(self) -> list[tuple[int, int]]:
        """Poll every tracked child once; never waits."""
        done = []
        for pid, proc in list(self._procs.items()):
            returncode = proc.poll()
            if returncode is None:
                continue
            del self._procs[pid]
            done.append((pid, returncode))
        return done

    def finish(self, pid: int, exit_status: int) -> Game:
        """Detach the game owned by ``pid`` and stamp its exit status."""
        game = self._games.pop(pid, None)
        if game is None:
            raise UnknownProcessError(f"unknown child pid {pid} exited with status {exit_status}")
        self._procs.pop(pid, None)
        game.exit_status = exit_status
        game.finished_at = time.time()
        if exit_status == 0:
            game.status = GameStatus.OK
        else:
            game.mark_error(f"exit status {exit_status}")
        return game
