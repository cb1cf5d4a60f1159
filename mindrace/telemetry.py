import csv
import os
import time
from dataclasses import dataclass
from typing import Optional

from .protocol import Side
from .utils import format_clock, format_final


@dataclass
class TelemetryRow:
    t: float
    elapsed_ms: float
    side: str
    status: str
    quality: float
    concentration: float
    boost: float
    laps: int
    laps_total: int
    relaxation: float
    gated: bool
    finish_ms: Optional[float]


HEADER = [
    "t", "elapsed_ms", "side", "status", "quality", "concentration", "boost",
    "laps", "laps_total", "relaxation", "gated", "finish_ms",
]


class TelemetryLogger:
    def __init__(self, path: Optional[str] = None):
        self._path = path
        self._file = None
        self._writer = None
        self._last_line_time = 0.0
        self._console_hud = False
        self._period_s = 0.5

    def configure(self, cfg):
        log_cfg = cfg.get("logging", {})
        path = self._path or log_cfg.get("csv_path", "logs/race_telemetry.csv")
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self._file = open(path, "w", newline="")
        self._writer = csv.writer(self._file)
        self._console_hud = bool(log_cfg.get("console_hud", True))
        self._period_s = float(log_cfg.get("hud_period_ms", 500)) / 1000.0
        self._writer.writerow(HEADER)

    def log(self, row: TelemetryRow):
        if not self._writer:
            return
        self._writer.writerow([
            row.t, row.elapsed_ms, row.side, row.status, row.quality,
            row.concentration, row.boost, row.laps, row.laps_total,
            row.relaxation, int(row.gated), "" if row.finish_ms is None else row.finish_ms,
        ])

    def snapshot(self, session):
        now = time.time()
        rows = []
        for side in Side:
            c = session.competitor(side)
            rows.append(TelemetryRow(
                t=now,
                elapsed_ms=session.clock.elapsed_ms,
                side=side.value,
                status=session.board.status(side).value,
                quality=session.board.quality(side),
                concentration=c.concentration,
                boost=c.boost,
                laps=c.laps,
                laps_total=c.laps_total,
                relaxation=c.relaxation,
                gated=c.gated,
                finish_ms=c.finish_ms,
            ))
        return rows

    def tick(self, session):
        now = time.time()
        if now - self._last_line_time < self._period_s:
            return
        self._last_line_time = now
        rows = self.snapshot(session)
        for row in rows:
            self.log(row)
        if self._console_hud:
            print(hud_line(session.clock.elapsed_ms, rows))

    def close(self):
        if self._file:
            self._file.close()
            self._file = None
            self._writer = None


def hud_line(elapsed_ms: float, rows) -> str:
    parts = [format_clock(elapsed_ms)]
    for row in rows:
        flag = " RELAX" if row.gated else ""
        parts.append(
            f"{row.side:<7} c={row.concentration:>3.0f} b={row.boost:>3.0f}"
            f" v={row.laps}/{row.laps_total} r={row.relaxation:>3.0f}"
            f" q={row.quality:>3.0f} t={format_final(row.finish_ms)}{flag}"
        )
    return " | ".join(parts)
