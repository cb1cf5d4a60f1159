import threading
import time

import pytest
import serial

from mindrace.config import normalize


class FakeSerial:
    def __init__(self, chunks=None, close_error=None):
        self._chunks = list(chunks or [])
        self._lock = threading.Lock()
        self._close_error = close_error
        self.closed = False
        self.cancelled = False

    def push(self, data: bytes):
        with self._lock:
            self._chunks.append(data)

    def read(self, n):
        if self.closed:
            raise serial.SerialException("port closed")
        with self._lock:
            if self._chunks:
                return self._chunks.pop(0)
        time.sleep(0.005)
        return b""

    def cancel_read(self):
        self.cancelled = True

    def close(self):
        self.closed = True
        if self._close_error:
            raise self._close_error


class FakeTransport:
    def __init__(self, ports=(), fail=(), available=True, preload=None):
        self.ports = list(ports)
        self.fail = set(fail)
        self._available = available
        self.preload = dict(preload or {})
        self.opened = {}

    def available(self):
        return self._available

    def list_ports(self):
        return list(self.ports)

    def open(self, port):
        if port in self.fail:
            raise serial.SerialException(f"could not open port {port}")
        ser = FakeSerial(self.preload.get(port))
        self.opened[port] = ser
        return ser


class FakeClock:
    def __init__(self, ms=1000.0):
        self.ms = ms

    def __call__(self):
        return self.ms


@pytest.fixture
def cfg(tmp_path):
    return normalize({
        "serial": {"authorized_path": str(tmp_path / "authorized.yaml")},
        "logging": {"console_hud": False, "csv_path": str(tmp_path / "race.csv")},
        "ranking": {"path": str(tmp_path / "ranking.csv")},
    })


@pytest.fixture
def clock():
    return FakeClock()
