import math
import threading
from enum import Enum
from typing import Dict, Optional

from .protocol import Side
from .utils import clamp


QUALITY_UNKNOWN = 200.0


class ConnectionStatus(Enum):
    NOT_CONNECTED = "not-connected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


_ORDER = {
    ConnectionStatus.NOT_CONNECTED: 0,
    ConnectionStatus.CONNECTING: 1,
    ConnectionStatus.CONNECTED: 2,
}


class ConnectionBoard:
    """Per-side connection status and quality.

    Shared between the pairing caller and the race session, hence the lock.
    Status only moves forward; ERROR is terminal.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._status: Dict[Side, ConnectionStatus] = {}
        self._quality: Dict[Side, float] = {}
        self.reset()

    def reset(self):
        with self._lock:
            for side in Side:
                if self._status.get(side) is not ConnectionStatus.ERROR:
                    self._status[side] = ConnectionStatus.NOT_CONNECTED
                self._quality[side] = QUALITY_UNKNOWN

    def _advance(self, side: Side, status: ConnectionStatus):
        current = self._status[side]
        if current is ConnectionStatus.ERROR:
            return
        if _ORDER[status] > _ORDER[current]:
            self._status[side] = status

    def mark_connecting(self):
        # A freshly opened port is not yet tied to a side
        with self._lock:
            for side in Side:
                self._advance(side, ConnectionStatus.CONNECTING)

    def mark_error(self):
        with self._lock:
            for side in Side:
                self._status[side] = ConnectionStatus.ERROR

    def observe_quality(self, side: Side, value: Optional[float]) -> float:
        """Record a quality reading (None keeps the previous one) and return it."""
        with self._lock:
            if value is not None and math.isfinite(value):
                self._quality[side] = clamp(value, 0.0, QUALITY_UNKNOWN)
            q = self._quality[side]
            if q < QUALITY_UNKNOWN:
                self._advance(side, ConnectionStatus.CONNECTED)
            return q

    def status(self, side: Side) -> ConnectionStatus:
        with self._lock:
            return self._status[side]

    def quality(self, side: Side) -> float:
        with self._lock:
            return self._quality[side]

    def connected_count(self) -> int:
        with self._lock:
            return sum(1 for s in self._status.values() if s is ConnectionStatus.CONNECTED)

    def snapshot(self) -> Dict[Side, ConnectionStatus]:
        with self._lock:
            return dict(self._status)
