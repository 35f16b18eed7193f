from __future__ import annotations

if __package__ is None or __package__ == "":
    import sys
    from pathlib import Path

    sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

import io
import json
import sys
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock, patch

import benchmark_punter
from punter_bench import report as rpt
from punter_bench.status_client import FetchError, StatusSnapshot


class TestCli(unittest.TestCase):
    def test_invalid_rounds_exit_code(self) -> None:
        buf = io.StringIO()
        with redirect_stdout(buf):
            code = benchmark_punter.main(["--rounds", "0", sys.executable])
        self.assertEqual(code, 2)
        self.assertIn("ERROR: rounds must be >= 1", buf.getvalue())

    def test_missing_solver_exit_code(self) -> None:
        buf = io.StringIO()
        with redirect_stdout(buf):
            code = benchmark_punter.main([])
        self.assertEqual(code, 2)

    def test_status_dump(self) -> None:
        buf = io.StringIO()
        with patch.object(
            benchmark_punter.StatusClient, "fetch_snapshot", return_value=StatusSnapshot(servers=())
        ):
            with redirect_stdout(buf):
                code = benchmark_punter.main(["--status"])
        self.assertEqual(code, 0)
        payload = json.loads(buf.getvalue().strip().splitlines()[-1])
        self.assertTrue(payload["result"])
        self.assertEqual(payload["servers"], [])

    def test_status_dump_failure(self) -> None:
        buf = io.StringIO()
        with patch.object(benchmark_punter.StatusClient, "fetch_snapshot", side_effect=FetchError("down")):
            with redirect_stdout(buf):
                code = benchmark_punter.main(["--status"])
        self.assertEqual(code, 1)
        payload = json.loads(buf.getvalue().strip().splitlines()[-1])
        self.assertFalse(payload["result"])

    def test_run_prints_final_table(self) -> None:
        report = rpt.Report.create(["sample"], rounds=1)

        class FakeOrchestrator:
            def __init__(self, run):
                self.run = run
                self.report = None
                self.status_client = MagicMock()

            def request_stop(self):
                pass

            def start(self):
                self.report = report
                return report

            def execute(self):
                rpt.finalize(report)
                return report

        buf = io.StringIO()
        with patch.object(benchmark_punter, "Orchestrator", FakeOrchestrator), patch.object(
            benchmark_punter, "install_interrupt_handler"
        ):
            with redirect_stdout(buf):
                code = benchmark_punter.main(["-m", "sample", "-r", "1", sys.executable])
        self.assertEqual(code, 0)
        self.assertIn("TotalMetaScore", buf.getvalue())
        self.assertIn("| sample ", buf.getvalue())


if __name__ == "__main__":
    unittest.main()
