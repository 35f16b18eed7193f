"""Remote status page client.

The status page is an HTML table, one row per game server, with the
columns status, punters, extensions, (unused), port and map label.  Every
fetch is a fresh snapshot; nothing is cached and nothing is retried here,
retry policy lives in :func:`fetch_snapshot_with_retry`.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup
from requests.adapters import HTTPAdapter

from punter_bench.utils import parse_str_csv, retry_with_backoff

logger = logging.getLogger(__name__)

MAP_SUFFIX = ".json"
STATUS_TZ = timezone(timedelta(hours=2))

COL_STATUS = 0
COL_PUNTERS = 1
COL_EXTENSIONS = 2
COL_PORT = 4
COL_MAP = 5
MIN_COLUMNS = COL_MAP + 1

_WAITING_RE = re.compile(r"Waiting for punters\. \(([0-9]+)/([0-9]+)\)", re.IGNORECASE)
_GENERATED_RE = re.compile(r"Information generated: (.+)$", re.IGNORECASE)


class FetchError(RuntimeError):
    pass


class SlotStatus(str, Enum):
    OFFLINE = "OFFLINE"
    IN_PROGRESS = "IN_PROGRESS"
    WAIT = "WAIT"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class ServerSlot:
    status: SlotStatus
    punter_names: tuple[str, ...]
    punter_count: int
    max_punter_count: int
    extensions: frozenset[str]
    port: int
    map_id: str
    map_url: str
    map_name: str = ""

    @property
    def free_capacity(self) -> int:
        return self.max_punter_count - self.punter_count

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "punters": {
                "names": list(self.punter_names),
                "count": self.punter_count,
                "maxCount": self.max_punter_count,
            },
            "extensions": sorted(self.extensions),
            "port": self.port,
            "map": {
                "name": self.map_name,
                "shortName": self.map_id,
                "url": self.map_url,
            },
        }


@dataclass(frozen=True)
class StatusSnapshot:
    servers: tuple[ServerSlot, ...]
    generated_at: datetime | None = None
    fetched_at: float = field(default_factory=time.time)

    def map_ids(self) -> list[str]:
        seen: list[str] = []
        for slot in self.servers:
            if slot.map_id and slot.map_id not in seen:
                seen.append(slot.map_id)
        return seen

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": True,
            "ts": self.generated_at.isoformat() if self.generated_at else None,
            "servers": [slot.to_dict() for slot in self.servers],
        }


def parse_slot_status(raw: str) -> tuple[SlotStatus, int, int]:
    text = raw.strip()
    if text == "Offline.":
        return SlotStatus.OFFLINE, -1, -1
    if text == "Game in progress.":
        return SlotStatus.IN_PROGRESS, -1, -1
    match = _WAITING_RE.search(text)
    if match:
        return SlotStatus.WAIT, int(match.group(1)), int(match.group(2))
    return SlotStatus.UNKNOWN, -1, -1


def map_id_from_label(label: str) -> str:
    label = label.strip()
    if label.endswith(MAP_SUFFIX):
        return label[: -len(MAP_SUFFIX)]
    return label


def _parse_generated_at(soup: BeautifulSoup) -> datetime | None:
    header = soup.find("h3")
    if header is None:
        return None
    match = _GENERATED_RE.search(header.get_text(" ", strip=True))
    if not match:
        return None
    raw = match.group(1).strip()
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%a %b %d %H:%M:%S %Y"):
        try:
            local = datetime.strptime(raw, fmt).replace(tzinfo=STATUS_TZ)
        except ValueError:
            continue
        return local.astimezone(timezone.utc)
    logger.debug("Unrecognised status timestamp: %r", raw)
    return None


def _parse_row(cells: list[str], maps_base_url: str, row_index: int) -> ServerSlot:
    if len(cells) < MIN_COLUMNS:
        raise FetchError(f"status row {row_index}: expected {MIN_COLUMNS} columns, got {len(cells)}")

    status, count, max_count = parse_slot_status(cells[COL_STATUS])
    port_raw = cells[COL_PORT].strip()
    try:
        port = int(port_raw)
    except ValueError as exc:
        raise FetchError(f"status row {row_index}: port is not numeric: {port_raw!r}") from exc
    map_name = cells[COL_MAP].strip()
    if not map_name:
        raise FetchError(f"status row {row_index}: empty map label")

    return ServerSlot(
        status=status,
        punter_names=tuple(parse_str_csv(cells[COL_PUNTERS])),
        punter_count=count,
        max_punter_count=max_count,
        extensions=frozenset(parse_str_csv(cells[COL_EXTENSIONS])),
        port=port,
        map_id=map_id_from_label(map_name),
        map_url=urljoin(maps_base_url, map_name),
        map_name=map_name,
    )


def parse_status_html(html: str, maps_base_url: str) -> StatusSnapshot:
    soup = BeautifulSoup(html, "html.parser")
    rows = soup.find_all("tr")
    if not rows:
        raise FetchError("Unable to parse input: no server table found")

    servers = []
    # First row is the table header.
    for index, row in enumerate(rows[1:], start=1):
        cells = [cell.get_text(" ", strip=True) for cell in row.find_all(["td", "th"], recursive=False)]
        servers.append(_parse_row(cells, maps_base_url, index))

    return StatusSnapshot(servers=tuple(servers), generated_at=_parse_generated_at(soup))


def _build_session(user_agent: str) -> requests.Session:
    s = requests.Session()
    adapter = HTTPAdapter(pool_connections=1, pool_maxsize=2, max_retries=0)
    s.mount("http://", adapter)
    s.mount("https://", adapter)
    s.headers.update({"User-Agent": user_agent})
    return s


class StatusClient:
    def __init__(
        self,
        url: str,
        maps_base_url: str,
        user_agent: str = "PunterBenchmarkBot/1.0.0",
        timeout: float = 10.0,
    ):
        self.url = url
        self.maps_base_url = maps_base_url
        self.timeout = timeout
        self.session = _build_session(user_agent)

    @classmethod
    def from_run(cls, run) -> StatusClient:
        return cls(
            url=run.status_url,
            maps_base_url=run.maps_base_url,
            user_agent=run.user_agent,
            timeout=run.http_timeout,
        )

    def close(self) -> None:
        self.session.close()

    def fetch_snapshot(self) -> StatusSnapshot:
        try:
            response = self.session.get(self.url, timeout=self.timeout, allow_redirects=True)
            response.raise_for_status()
        except requests.exceptions.RequestException as exc:
            raise FetchError(f"status fetch failed: {exc}") from exc
        return parse_status_html(response.text, self.maps_base_url)

    def fetch(self) -> list[ServerSlot]:
        return list(self.fetch_snapshot().servers)


def fetch_snapshot_with_retry(
    client: StatusClient,
    retries: int,
    backoff_sec: float,
    log: logging.Logger | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StatusSnapshot:
    """Fetch a snapshot, retrying ``retries`` times with a fixed backoff.

    Raises the last FetchError once the attempts are exhausted.
    """
    return retry_with_backoff(
        client.fetch_snapshot,
        retries=retries,
        base_delay=backoff_sec,
        max_delay=backoff_sec,
        exceptions=(FetchError,),
        logger=log or logger,
        context="status fetch",
        sleep=sleep,
    )
