"""Benchmark orchestrator for punter solvers on the shared game server pool."""

__all__ = [
    "allocator",
    "config",
    "orchestrator",
    "outcome",
    "process_pool",
    "report",
    "status_client",
    "utils",
]
