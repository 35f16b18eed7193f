"""Parse a solver's captured log and score the finished game.

The capture is line-oriented protocol chatter; only two JSON fragments
matter: the first ``{"ready": ...}`` (our punter id) and the first
``{"stop": {"scores": [...]}}`` (final score table).
"""
from __future__ import annotations

import json
import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from punter_bench.utils import ensure_dir, file_timestamp

logger = logging.getLogger(__name__)

READY_MARKER = '{"ready":'
STOP_MARKER = '{"stop":'

_DECODER = json.JSONDecoder()


class MalformedOutputError(RuntimeError):
    pass


class GameResult(str, Enum):
    WIN = "win"
    LOOSE = "loose"


@dataclass(frozen=True)
class PunterScore:
    punter: int
    score: int


@dataclass(frozen=True)
class Outcome:
    players: int
    my_punter_id: int
    max_score: int
    my_score: int
    my_meta_score: int
    result: GameResult


def _decode_fragment(line: str, pos: int) -> Any:
    value, _ = _DECODER.raw_decode(line, pos)
    return value


def _ready_id(payload: Any) -> int | None:
    value = payload.get("ready") if isinstance(payload, dict) else None
    if isinstance(value, dict):
        value = value.get("id", value.get("punter"))
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _score_table(payload: Any) -> list[PunterScore]:
    try:
        rows = payload["stop"]["scores"]
        table = [PunterScore(punter=int(row["punter"]), score=int(row["score"])) for row in rows]
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedOutputError(f"stop fragment has no usable score table: {exc}") from exc
    if not table:
        raise MalformedOutputError("stop fragment carries an empty score table")
    return table


def parse(lines: Iterable[str]) -> tuple[int, list[PunterScore]]:
    """Return ``(self_punter_id, score_table)`` from captured log lines."""
    my_id: int | None = None
    ready_seen = False
    scores: list[PunterScore] | None = None

    for line in lines:
        if not ready_seen:
            pos = line.find(READY_MARKER)
            if pos != -1:
                ready_seen = True
                try:
                    my_id = _ready_id(_decode_fragment(line, pos))
                except json.JSONDecodeError:
                    my_id = None
        if scores is None:
            pos = line.find(STOP_MARKER)
            if pos != -1:
                try:
                    payload = _decode_fragment(line, pos)
                except json.JSONDecodeError as exc:
                    raise MalformedOutputError(f"stop fragment is not valid JSON: {exc}") from exc
                scores = _score_table(payload)
        if ready_seen and scores is not None:
            break

    if scores is None:
        raise MalformedOutputError("no stop fragment in game output")
    if my_id is None:
        raise MalformedOutputError("no usable ready fragment in game output")
    return my_id, scores


def parse_file(path: str | Path) -> tuple[int, list[PunterScore]]:
    try:
        with open(path, encoding="utf-8", errors="replace") as fh:
            return parse(fh)
    except OSError as exc:
        raise MalformedOutputError(f"unable to read game output {path}: {exc}") from exc


def score(my_punter_id: int, table: list[PunterScore]) -> Outcome:
    if not table:
        raise MalformedOutputError("empty score table")
    players = len(table)
    ranked = sorted(table, key=lambda row: row.score, reverse=True)
    max_score = ranked[0].score

    meta_score = players
    for row in ranked:
        if row.score < max_score:
            meta_score -= 1
        if row.punter == my_punter_id:
            result = GameResult.WIN if meta_score == players else GameResult.LOOSE
            return Outcome(
                players=players,
                my_punter_id=my_punter_id,
                max_score=max_score,
                my_score=row.score,
                my_meta_score=meta_score,
                result=result,
            )
    raise MalformedOutputError(f"punter {my_punter_id} is missing from the score table")


def score_file(path: str | Path) -> Outcome:
    my_id, table = parse_file(path)
    return score(my_id, table)


def archive_loose_log(output_path: str | Path, loose_dir: str | Path, map_id: str, pid: int) -> Path:
    target_dir = Path(loose_dir)
    ensure_dir(target_dir)
    target = target_dir / f"{map_id}-{pid}-{file_timestamp()}.log"
    shutil.copyfile(output_path, target)
    logger.info("[%d] Loose game log saved to %s", pid, target)
    return target
