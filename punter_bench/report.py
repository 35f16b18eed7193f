"""Per-map benchmark report.

Summaries are recomputed from the game list on every finalize, never
maintained incrementally.  ``rounds_left`` alone decides run completion.
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from punter_bench.outcome import GameResult
from punter_bench.process_pool import Game, GameStatus
from punter_bench.utils import ensure_dir, timestamp

COLUMNS = ["Map", "Games", "Errors", "Score", "MetaScore", "TotalMetaScore", "WinRate"]


@dataclass
class Summary:
    errors: int = 0
    avg_score: float = 0.0
    avg_meta_score: float = 0.0
    meta_score_total: int = 0
    win_rate: float = 0.0


@dataclass
class MapProgress:
    rounds: int
    rounds_left: int
    games: list[Game] = field(default_factory=list)
    summary: Summary = field(default_factory=Summary)

    @property
    def error_count(self) -> int:
        return sum(1 for g in self.games if g.status == GameStatus.ERROR)


@dataclass
class Report:
    maps: dict[str, MapProgress]

    @classmethod
    def create(cls, map_ids: list[str], rounds: int) -> Report:
        return cls(maps={m: MapProgress(rounds=rounds, rounds_left=rounds) for m in map_ids})

    def pending_maps(self) -> list[str]:
        return [m for m, info in self.maps.items() if info.rounds_left > 0]

    def consume_round(self, map_id: str) -> None:
        self.maps[map_id].rounds_left -= 1

    def release_round(self, map_id: str) -> None:
        self.maps[map_id].rounds_left += 1


def update(report: Report, game: Game) -> None:
    info = report.maps[game.map_id]
    info.games.append(game)
    if game.status == GameStatus.ERROR:
        info.summary.errors += 1
        info.rounds_left += 1


def finalize(report: Report) -> None:
    for info in report.maps.values():
        ok_games = [g for g in info.games if g.status == GameStatus.OK]
        summary = Summary(errors=info.error_count)
        if ok_games:
            n = len(ok_games)
            meta_total = sum(g.my_meta_score for g in ok_games)
            wins = sum(1 for g in ok_games if g.result == GameResult.WIN)
            summary.avg_score = float(sum(g.my_score for g in ok_games)) / n
            summary.avg_meta_score = float(meta_total) / n
            summary.meta_score_total = meta_total
            summary.win_rate = float(wins) / n
        info.summary = summary


def is_complete(report: Report) -> bool:
    return all(info.rounds_left <= 0 for info in report.maps.values())


def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.3f}".rstrip("0").rstrip(".") if value else "0"
    return str(value)


def report_rows(report: Report) -> list[dict[str, Any]]:
    rows = []
    for name, info in report.maps.items():
        rows.append(
            {
                "Map": name,
                "Games": len(info.games),
                "Errors": info.summary.errors,
                "Score": info.summary.avg_score,
                "MetaScore": info.summary.avg_meta_score,
                "TotalMetaScore": info.summary.meta_score_total,
                "WinRate": info.summary.win_rate,
            }
        )
    return rows


def format_table(report: Report) -> str:
    rows = [[_fmt(row[col]) for col in COLUMNS] for row in report_rows(report)]
    widths = [len(col) for col in COLUMNS]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    sep = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def line(cells: list[str]) -> str:
        return "| " + " | ".join(cell.ljust(w) for cell, w in zip(cells, widths)) + " |"

    out = [sep, line(COLUMNS), sep]
    out.extend(line(row) for row in rows)
    out.append(sep)
    return "\n".join(out)


def print_report(report: Report) -> None:
    print(format_table(report))
    print()


def to_dict(report: Report) -> dict[str, Any]:
    return {
        "generated_at": timestamp(),
        "maps": {
            name: {
                "rounds": info.rounds,
                "roundsLeft": info.rounds_left,
                "summary": asdict(info.summary),
                "games": [g.to_dict() for g in info.games],
            }
            for name, info in report.maps.items()
        },
    }


def write_json(report: Report, path: str | Path) -> Path:
    out = Path(path)
    ensure_dir(out.parent)
    out.write_text(json.dumps(to_dict(report), ensure_ascii=False, indent=2), encoding="utf-8")
    return out
