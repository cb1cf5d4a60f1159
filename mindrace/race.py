"""
Race clock and arbitration.

``RaceSession`` is the single owner of one race instance. Link read loops
only ``submit`` decoded events; everything that mutates competitor state,
the clock or the outcome happens inside ``tick``/``finalize_manually``/
``reset`` on the controlling thread.
"""

import queue
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from .competitor import (
    BLINK_HOLD_MS,
    DEFAULT_LAPS_TOTAL,
    GATE_RELAX_THRESHOLD,
    CompetitorState,
    Phase,
)
from .connection import ConnectionBoard
from .errors import RaceNotReadyError
from .protocol import BlinkEvent, Event, Side, TelemetryUpdate
from .utils import format_final, now_ms


class RaceClock:
    def __init__(self, now: Callable[[], float] = now_ms):
        self._now = now
        self.reset()

    def reset(self):
        self.started = False
        self.running = False
        self.start_at: Optional[float] = None
        self.elapsed_ms = 0.0

    def start(self) -> bool:
        if self.started:
            return False
        self.started = True
        self.running = True
        self.start_at = self._now()
        self.elapsed_ms = 0.0
        return True

    def tick(self) -> float:
        if self.running:
            self.elapsed_ms = self._now() - self.start_at
        return self.elapsed_ms

    def stop(self) -> bool:
        if not self.running:
            return False
        self.tick()
        self.running = False
        return True


class Winner(Enum):
    POLICIA = "policia"
    TAXI = "taxi"
    TIE = "tie"

    @classmethod
    def for_side(cls, side: Side) -> "Winner":
        return cls(side.value)


class Reason(Enum):
    TIME = "time"
    LAPS = "laps"


@dataclass(frozen=True)
class RaceOutcome:
    winner: Winner
    reason: Reason

    @property
    def description(self) -> str:
        if self.reason is Reason.TIME:
            return "Equal times." if self.winner is Winner.TIE else "Lowest final time."
        return "Same laps." if self.winner is Winner.TIE else "More laps."


def outcome_by_time(a: CompetitorState, b: CompetitorState) -> RaceOutcome:
    """Automatic completion: both finished, the smaller finish time wins."""
    if a.finish_ms < b.finish_ms:
        return RaceOutcome(Winner.for_side(a.side), Reason.TIME)
    if b.finish_ms < a.finish_ms:
        return RaceOutcome(Winner.for_side(b.side), Reason.TIME)
    return RaceOutcome(Winner.TIE, Reason.TIME)


def outcome_by_laps(a: CompetitorState, b: CompetitorState) -> RaceOutcome:
    """Manual finalize: more completed laps wins. Times are never compared."""
    if a.laps > b.laps:
        return RaceOutcome(Winner.for_side(a.side), Reason.LAPS)
    if b.laps > a.laps:
        return RaceOutcome(Winner.for_side(b.side), Reason.LAPS)
    return RaceOutcome(Winner.TIE, Reason.LAPS)


class RaceSession:
    def __init__(self, cfg=None, now: Callable[[], float] = now_ms,
                 board: Optional[ConnectionBoard] = None):
        race_cfg = (cfg or {}).get("race", {})
        self._default_total = int(race_cfg.get("default_laps_total", DEFAULT_LAPS_TOTAL))
        self._relax_threshold = float(race_cfg.get("gate_relax_threshold", GATE_RELAX_THRESHOLD))
        self.blink_hold_ms = float(race_cfg.get("blink_hold_ms", BLINK_HOLD_MS))
        self._now = now
        self._events: "queue.Queue[Event]" = queue.Queue()
        self.board = board or ConnectionBoard()
        self.clock = RaceClock(now)
        self.competitors: Dict[Side, CompetitorState] = {}
        self.outcome: Optional[RaceOutcome] = None
        self._new_competitors()

    def _new_competitors(self):
        self.competitors = {
            side: CompetitorState(side, laps_total=self._default_total,
                                  relax_threshold=self._relax_threshold)
            for side in Side
        }

    def competitor(self, side: Side) -> CompetitorState:
        return self.competitors[side]

    def phase(self, side: Side) -> Phase:
        return self.competitors[side].phase(self.clock.running)

    def is_blinking(self, side: Side) -> bool:
        return self.competitors[side].is_blinking(self._now(), self.blink_hold_ms)

    # -- commands ---------------------------------------------------------

    def submit(self, event: Event):
        self._events.put(event)

    def start(self, force: bool = False) -> bool:
        if self.clock.started:
            return False
        if not force and self.board.connected_count() < 1:
            raise RaceNotReadyError("no competitor connected")
        started = self.clock.start()
        if started:
            print("[RACE] Started")
        return started

    def finalize_manually(self) -> RaceOutcome:
        # updates already queued still count
        self.clock.tick()
        self.drain()
        self.clock.stop()
        if self.outcome is None:
            a, b = self.competitors[Side.POLICIA], self.competitors[Side.TAXI]
            self.outcome = outcome_by_laps(a, b)
            print(f"[RACE] Finalized: {self.outcome.winner.value} ({self.outcome.description})")
        return self.outcome

    def reset(self):
        self.clock.reset()
        self._new_competitors()
        self.board.reset()
        self.outcome = None
        while True:
            try:
                self._events.get_nowait()
            except queue.Empty:
                break

    # -- event application ------------------------------------------------

    def apply(self, event: Event):
        competitor = self.competitors[event.side]
        if isinstance(event, BlinkEvent):
            competitor.apply_blink(event)
            return
        if isinstance(event, TelemetryUpdate):
            self.board.observe_quality(event.side, event.quality)
            if competitor.apply_update(event, self.clock.elapsed_ms, self.clock.running):
                print(f"[RACE] {event.side.label} finished in {format_final(competitor.finish_ms)}")

    def drain(self) -> List[Event]:
        applied = []
        while True:
            try:
                event = self._events.get_nowait()
            except queue.Empty:
                break
            self.apply(event)
            applied.append(event)
        return applied

    def tick(self) -> Optional[RaceOutcome]:
        """Advance the clock, apply queued events, then run the completion checks.

        Returns the outcome on the tick that decides it, otherwise None.
        """
        self.clock.tick()
        self.drain()
        if not self.clock.running:
            return None
        for competitor in self.competitors.values():
            if competitor.check_finish(self.clock.elapsed_ms, True):
                print(f"[RACE] {competitor.side.label} finished in {format_final(competitor.finish_ms)}")
        return self._check_completion()

    def _check_completion(self) -> Optional[RaceOutcome]:
        if self.outcome is not None:
            return None
        a, b = self.competitors[Side.POLICIA], self.competitors[Side.TAXI]
        if not (a.finished and b.finished):
            return None
        self.clock.stop()
        self.outcome = outcome_by_time(a, b)
        print(f"[RACE] Complete: {self.outcome.winner.value} ({self.outcome.description})")
        return self.outcome
