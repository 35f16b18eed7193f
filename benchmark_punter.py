import argparse
import json
import logging
import signal
import sys

from punter_bench import report as rpt
from punter_bench.config import ALL_MAPS, ConfigError, build_run, load_config
from punter_bench.orchestrator import Orchestrator
from punter_bench.process_pool import SpawnError
from punter_bench.status_client import FetchError, StatusClient
from punter_bench.utils import parse_str_csv, setup_logger


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Benchmark a punter solver against the public game server pool."
    )
    parser.add_argument("solver", nargs="?", default=None, help="Solver binary to run for every game.")
    parser.add_argument(
        "-m",
        "--maps",
        type=str,
        default=None,
        help=f"Comma-separated map ids (without .json extension), or {ALL_MAPS}.",
    )
    parser.add_argument("-r", "--rounds", type=int, default=None, help="Rounds to play on every map.")
    parser.add_argument("-p", "--parallel", type=int, default=None, help="Number of concurrent running games.")
    parser.add_argument("--config", type=str, default=None, help="JSON or YAML config file.")
    parser.add_argument(
        "--avoid-eager",
        action="store_true",
        default=None,
        help="Skip servers where only the eager placeholder punter is waiting.",
    )
    parser.add_argument("--loose-dir", type=str, default=None, help="Directory to keep logs of lost games.")
    parser.add_argument(
        "--flush-every",
        type=float,
        default=None,
        help="Print an intermediate report every N seconds (0 disables).",
    )
    parser.add_argument("--poll-interval", type=float, default=None, help="Seconds between status polls.")
    parser.add_argument("--report-json", type=str, default=None, help="Write the final report as JSON.")
    parser.add_argument(
        "--status",
        action="store_true",
        help="Print the parsed status page as JSON and exit.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def dump_status(cfg) -> int:
    status = cfg.get("status") or {}
    client = StatusClient(
        url=status.get("url"),
        maps_base_url=status.get("maps_base_url"),
        user_agent=status.get("user_agent"),
        timeout=float(status.get("timeout", 10.0)),
    )
    try:
        snapshot = client.fetch_snapshot()
    except FetchError as exc:
        print(json.dumps({"result": False, "message": str(exc)}))
        return 1
    finally:
        client.close()
    print(json.dumps(snapshot.to_dict(), ensure_ascii=False))
    return 0


def install_interrupt_handler(orchestrator):
    def _on_sigint(signum, frame):
        orchestrator.request_stop()
        # A second Ctrl-C aborts for real.
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, _on_sigint)


def main(argv=None):
    args = parse_args(argv)
    log = setup_logger("punter_bench", logging.DEBUG if args.verbose else logging.INFO)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        return 2

    if args.status:
        return dump_status(cfg)

    overrides = {
        "solver": args.solver,
        "maps": parse_str_csv(args.maps) if args.maps is not None else None,
        "rounds": args.rounds,
        "parallel": args.parallel,
        "avoid_eager": args.avoid_eager,
        "loose_dir": args.loose_dir,
        "flush_interval_sec": args.flush_every,
        "poll_interval_sec": args.poll_interval,
        "report_json": args.report_json,
    }
    try:
        run = build_run(cfg, overrides)
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        return 2

    orchestrator = Orchestrator(run)
    install_interrupt_handler(orchestrator)
    try:
        orchestrator.start()
        report = orchestrator.execute()
    except ConfigError as exc:
        print(f"ERROR: {exc}")
        return 2
    except SpawnError as exc:
        log.error("Aborting benchmark: %s", exc)
        if orchestrator.report is not None:
            rpt.print_report(orchestrator.report)
        return 1
    finally:
        orchestrator.status_client.close()

    rpt.print_report(report)
    if orchestrator.run.report_json:
        path = rpt.write_json(report, orchestrator.run.report_json)
        log.info("Report written to %s", path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
