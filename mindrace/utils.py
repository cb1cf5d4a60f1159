import math
import time
from typing import Optional


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def as_number(value) -> Optional[float]:
    # Booleans and null are not readings; numeric strings are.
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        n = float(value.strip() if isinstance(value, str) else value)
    except (ValueError, OverflowError):
        # ints past float range overflow
        return None
    if not math.isfinite(n):
        return None
    return n


def format_clock(ms: float) -> str:
    t = max(0, int(ms))
    return f"{t // 60000:02d}:{(t % 60000) // 1000:02d}"


def format_final(ms: Optional[float]) -> str:
    if ms is None:
        return "-:-"
    t = max(0, int(ms))
    return f"{t // 60000:02d}:{(t % 60000) // 1000:02d}.{(t % 1000) // 10:02d}"


def now_ms() -> float:
    return time.monotonic() * 1000.0
