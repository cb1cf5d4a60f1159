"""
Device wire protocol.

Each line is one JSON object. Telemetry lines carry any subset of
``concentracao``, ``boost``, ``voltas``, ``voltasTotal``, ``conexao`` and
``relaxamento``; event lines carry ``evento`` (only ``"blink"`` is known).
Both may name their competitor with ``lado``. Lines without ``lado`` belong
to whichever side the link has already been bound to.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from .utils import as_number, now_ms


BLINK_EVENT = "blink"


class Side(Enum):
    POLICIA = "policia"
    TAXI = "taxi"

    @property
    def label(self) -> str:
        return "Polícia" if self is Side.POLICIA else "Táxi"

    @property
    def other(self) -> "Side":
        return Side.TAXI if self is Side.POLICIA else Side.POLICIA

    @classmethod
    def parse(cls, value) -> Optional["Side"]:
        if value is None:
            return None
        try:
            return cls(str(value).lower())
        except ValueError:
            return None


@dataclass
class TelemetryUpdate:
    side: Side
    concentration: Optional[float] = None
    boost: Optional[float] = None
    laps: Optional[float] = None
    laps_total: Optional[float] = None
    quality: Optional[float] = None
    relaxation: Optional[float] = None
    received_at: float = 0.0


@dataclass
class BlinkEvent:
    side: Side
    at: float = 0.0


Event = Union[TelemetryUpdate, BlinkEvent]


def parse_record(record: str) -> Optional[dict]:
    try:
        obj = json.loads(record.strip())
    except (ValueError, RecursionError):
        return None
    if not isinstance(obj, dict):
        return None
    return obj


def _build_event(obj: dict, side: Side, at: float) -> Event:
    if obj.get("evento") == BLINK_EVENT:
        return BlinkEvent(side=side, at=at)
    return TelemetryUpdate(
        side=side,
        concentration=as_number(obj.get("concentracao")),
        boost=as_number(obj.get("boost")),
        laps=as_number(obj.get("voltas")),
        laps_total=as_number(obj.get("voltasTotal")),
        quality=as_number(obj.get("conexao")),
        relaxation=as_number(obj.get("relaxamento")),
        received_at=at,
    )


def decode_record(record: str, fallback: Optional[Side] = None,
                  clock: Callable[[], float] = now_ms) -> Optional[Event]:
    """Decode one line without any link binding.

    An explicit ``lado`` wins over ``fallback``. Returns None for malformed
    lines and for lines whose side cannot be resolved.
    """
    obj = parse_record(record)
    if obj is None:
        return None
    side = Side.parse(obj.get("lado")) or fallback
    if side is None:
        return None
    return _build_event(obj, side, clock())


class LinkDecoder:
    """Decoder bound to one link; remembers which side the link carries."""

    def __init__(self, allow_rebind: bool = True, clock: Callable[[], float] = now_ms):
        self.side: Optional[Side] = None
        self._allow_rebind = allow_rebind
        self._clock = clock

    def decode(self, record: str) -> Optional[Event]:
        obj = parse_record(record)
        if obj is None:
            return None
        explicit = Side.parse(obj.get("lado"))
        if explicit is not None and self.side is not None and explicit != self.side:
            if not self._allow_rebind:
                return None
        side = explicit or self.side
        if side is None:
            return None
        if explicit is not None:
            self.side = explicit
        return _build_event(obj, side, self._clock())
