from __future__ import annotations

if __package__ is None or __package__ == "":
    import sys
    from pathlib import Path

    sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

import json
import tempfile
import unittest
from dataclasses import asdict
from pathlib import Path

from punter_bench import report as rpt
from punter_bench.outcome import GameResult, Outcome
from punter_bench.process_pool import Game, GameStatus
from punter_bench.status_client import ServerSlot, SlotStatus

SLOT = ServerSlot(
    status=SlotStatus.WAIT,
    punter_names=("alice",),
    punter_count=1,
    max_punter_count=2,
    extensions=frozenset(),
    port=9001,
    map_id="sample",
    map_url="http://maps.test/sample.json",
)


def ok_game(map_id: str, my_score: int, meta: int, players: int = 2) -> Game:
    game = Game(map_id=map_id, slot=SLOT, pid=100, status=GameStatus.OK)
    game.apply_outcome(
        Outcome(
            players=players,
            my_punter_id=0,
            max_score=my_score,
            my_score=my_score,
            my_meta_score=meta,
            result=GameResult.WIN if meta == players else GameResult.LOOSE,
        )
    )
    return game


def error_game(map_id: str) -> Game:
    game = Game(map_id=map_id, slot=SLOT, pid=101)
    game.mark_error("exit status 1")
    return game


class TestReport(unittest.TestCase):
    def test_zero_games_keep_zero_summary(self) -> None:
        report = rpt.Report.create(["sample"], rounds=3)
        rpt.finalize(report)
        self.assertEqual(asdict(report.maps["sample"].summary), asdict(rpt.Summary()))
        self.assertFalse(rpt.is_complete(report))

    def test_finalize_uses_ok_games_only(self) -> None:
        report = rpt.Report.create(["sample"], rounds=3)
        rpt.update(report, ok_game("sample", 10, 2))
        rpt.update(report, ok_game("sample", 4, 1))
        rpt.update(report, error_game("sample"))
        rpt.finalize(report)
        summary = report.maps["sample"].summary
        self.assertEqual(summary.errors, 1)
        self.assertAlmostEqual(summary.avg_score, 7.0)
        self.assertAlmostEqual(summary.avg_meta_score, 1.5)
        self.assertEqual(summary.meta_score_total, 3)
        self.assertAlmostEqual(summary.win_rate, 0.5)

    def test_finalize_is_idempotent(self) -> None:
        report = rpt.Report.create(["sample", "lambda"], rounds=2)
        rpt.update(report, ok_game("sample", 5, 2))
        rpt.update(report, error_game("lambda"))
        rpt.finalize(report)
        first = {m: asdict(info.summary) for m, info in report.maps.items()}
        rpt.finalize(report)
        second = {m: asdict(info.summary) for m, info in report.maps.items()}
        self.assertEqual(first, second)

    def test_error_credits_round_back(self) -> None:
        report = rpt.Report.create(["sample"], rounds=5)
        info = report.maps["sample"]
        errors = 0
        # Allocation consumes a round; errors hand it back.
        for outcome in ["error", "ok", "error", "ok", "ok", "ok", "ok"]:
            report.consume_round("sample")
            if outcome == "error":
                rpt.update(report, error_game("sample"))
                errors += 1
            else:
                rpt.update(report, ok_game("sample", 1, 2))
        self.assertEqual(info.rounds_left, 0)
        self.assertTrue(rpt.is_complete(report))
        self.assertEqual(len(info.games), info.rounds + errors)
        self.assertEqual(info.summary.errors, 2)

    def test_pending_maps_follow_declaration_order(self) -> None:
        report = rpt.Report.create(["b", "a", "c"], rounds=1)
        report.consume_round("a")
        self.assertEqual(report.pending_maps(), ["b", "c"])

    def test_table_has_expected_columns(self) -> None:
        report = rpt.Report.create(["sample"], rounds=1)
        rpt.update(report, ok_game("sample", 3, 2))
        rpt.finalize(report)
        text = rpt.format_table(report)
        header = text.splitlines()[1]
        for column in rpt.COLUMNS:
            self.assertIn(column, header)
        self.assertIn("| sample ", text)

    def test_write_json(self) -> None:
        report = rpt.Report.create(["sample"], rounds=1)
        rpt.update(report, ok_game("sample", 3, 2))
        rpt.finalize(report)
        with tempfile.TemporaryDirectory() as td:
            path = rpt.write_json(report, Path(td) / "out" / "report.json")
            payload = json.loads(path.read_text(encoding="utf-8"))
        entry = payload["maps"]["sample"]
        self.assertEqual(entry["rounds"], 1)
        self.assertEqual(entry["summary"]["win_rate"], 1.0)
        self.assertEqual(entry["games"][0]["result"], "win")


if __name__ == "__main__":
    unittest.main()
