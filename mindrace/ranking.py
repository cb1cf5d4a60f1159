import csv
import os
import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from .protocol import Side


FIELDS = ["identity", "display_name", "side", "finish_time_ms", "recorded_at"]


def normalize_phone(value: Optional[str]) -> str:
    return re.sub(r"\D+", "", value or "")


@dataclass
class Player:
    side: Side
    identity: str = ""
    first_name: str = ""
    last_name: str = ""

    @property
    def display_name(self) -> str:
        name = f"{self.first_name.strip()} {self.last_name.strip()}".strip()
        return name or self.side.label


@dataclass
class RankingEntry:
    identity: str
    display_name: str
    finish_time_ms: Optional[float]
    recorded_at: float
    side: str = ""


class RankingStore:
    """Append-only CSV of finish times."""

    def __init__(self, path: str):
        self._path = os.path.expanduser(path)

    def append(self, entry: RankingEntry):
        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        new_file = not os.path.exists(self._path) or os.path.getsize(self._path) == 0
        with open(self._path, "a", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=FIELDS)
            if new_file:
                writer.writeheader()
            writer.writerow({
                "identity": entry.identity,
                "display_name": entry.display_name,
                "side": entry.side,
                "finish_time_ms": "" if entry.finish_time_ms is None else entry.finish_time_ms,
                "recorded_at": entry.recorded_at,
            })

    def load_all(self) -> List[RankingEntry]:
        if not os.path.exists(self._path):
            return []
        entries = []
        with open(self._path, "r", newline="") as f:
            for row in csv.DictReader(f):
                try:
                    finish = float(row["finish_time_ms"]) if row.get("finish_time_ms") else None
                    recorded = float(row.get("recorded_at") or 0)
                except ValueError:
                    print(f"[RANKING] Skipping bad row: {row}")
                    continue
                entries.append(RankingEntry(
                    identity=row.get("identity") or "",
                    display_name=row.get("display_name") or "",
                    finish_time_ms=finish,
                    recorded_at=recorded,
                    side=row.get("side") or "",
                ))
        entries.sort(key=lambda e: float("inf") if e.finish_time_ms is None else e.finish_time_ms)
        return entries

    def top(self, n: int = 8) -> List[RankingEntry]:
        return self.load_all()[:n]


def record_results(session, players: Dict[Side, Player], store: RankingStore,
                   recorded_at: Optional[float] = None) -> List[RankingEntry]:
    """Append one entry per competitor that crossed the line."""
    recorded_at = time.time() if recorded_at is None else recorded_at
    saved = []
    for side in Side:
        finish = session.competitor(side).finish_ms
        if finish is None:
            continue
        player = players.get(side) or Player(side=side)
        entry = RankingEntry(
            identity=normalize_phone(player.identity),
            display_name=player.display_name,
            finish_time_ms=finish,
            recorded_at=recorded_at,
            side=side.value,
        )
        store.append(entry)
        saved.append(entry)
    return saved
