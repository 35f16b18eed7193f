import logging
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable


def setup_logger(name: str = "punter_bench", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        logger.setLevel(level)
        return logger

    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s", "%H:%M:%S")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


def file_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def parse_str_csv(raw: str | None) -> list[str]:
    if not raw:
        return []
    values: list[str] = []
    for token in raw.split(","):
        token = token.strip()
        if token:
            values.append(token)
    return values


def unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def retry_with_backoff(
    fn: Callable[[], object],
    retries: int,
    base_delay: float,
    max_delay: float,
    exceptions: tuple[type[BaseException], ...],
    logger: logging.Logger | None = None,
    context: str = "",
    sleep: Callable[[float], None] = time.sleep,
):
    last_exc: BaseException | None = None
    for attempt in range(retries):
        try:
            return fn()
        except exceptions as exc:  # type: ignore[arg-type]
            last_exc = exc
            if attempt >= retries - 1:
                break
            delay = min(max_delay, base_delay * (2**attempt))
            if logger is not None:
                logger.warning(
                    "Retry %d/%d for %s after error: %s (sleep %.2fs)",
                    attempt + 1,
                    retries,
                    context or "operation",
                    exc,
                    delay,
                )
            sleep(delay)
    if last_exc is not None:
        raise last_exc
    raise RuntimeError("retry_with_backoff reached unexpected path")
