import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .protocol import BlinkEvent, Side, TelemetryUpdate
from .utils import clamp


DEFAULT_LAPS_TOTAL = 10
GATE_RELAX_THRESHOLD = 50.0
BLINK_HOLD_MS = 220.0


class Phase(Enum):
    IDLE = "idle"
    RACING = "racing"
    GATED = "gated"
    FINISHED = "finished"


def is_gated(laps: int, laps_total: int, concentration: float, relaxation: float,
             relax_threshold: float = GATE_RELAX_THRESHOLD) -> bool:
    # From half distance on, a collapsed concentration freezes progress until
    # the competitor relaxes again.
    return laps * 2 >= laps_total and concentration <= 0 and relaxation < relax_threshold


@dataclass
class CompetitorState:
    side: Side
    concentration: float = 0.0
    boost: float = 0.0
    laps: int = 0
    laps_total: int = DEFAULT_LAPS_TOTAL
    finish_ms: Optional[float] = None
    relaxation: float = 0.0
    gated: bool = False
    last_update_at: Optional[float] = None
    last_blink_at: Optional[float] = None
    relax_threshold: float = GATE_RELAX_THRESHOLD

    @property
    def finished(self) -> bool:
        return self.finish_ms is not None and self.laps >= self.laps_total

    def phase(self, running: bool) -> Phase:
        if self.finish_ms is not None:
            return Phase.FINISHED
        if self.gated:
            return Phase.GATED
        return Phase.RACING if running else Phase.IDLE

    def apply_update(self, update: TelemetryUpdate, elapsed_ms: float, running: bool) -> bool:
        """Fold one telemetry update in. Returns True if it finished the competitor."""
        frozen = self.finish_ms is not None

        if not frozen and update.laps_total is not None and update.laps_total >= 1:
            self.laps_total = int(update.laps_total)
        if update.concentration is not None:
            self.concentration = clamp(update.concentration, 0.0, 100.0)
        if update.boost is not None:
            self.boost = clamp(update.boost, 0.0, 100.0)
        if update.relaxation is not None:
            self.relaxation = clamp(update.relaxation, 0.0, 100.0)

        reported = self.laps if update.laps is None else math.floor(update.laps)
        laps = int(clamp(reported, 0, self.laps_total))

        self.gated = is_gated(laps, self.laps_total, self.concentration,
                              self.relaxation, self.relax_threshold)
        if not frozen:
            self.laps = min(self.laps, laps) if self.gated else laps

        self.last_update_at = update.received_at
        return self.check_finish(elapsed_ms, running)

    def apply_blink(self, event: BlinkEvent):
        self.last_blink_at = event.at

    def check_finish(self, elapsed_ms: float, running: bool) -> bool:
        if running and self.finish_ms is None and self.laps >= self.laps_total:
            self.finish_ms = elapsed_ms
            return True
        return False

    def is_blinking(self, now: float, hold_ms: float = BLINK_HOLD_MS) -> bool:
        if self.last_blink_at is None:
            return False
        return now - self.last_blink_at < hold_ms
