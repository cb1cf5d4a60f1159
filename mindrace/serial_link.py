import codecs
import threading
import time
from typing import Callable, List, Optional

import serial

from .framing import LineFramer
from .protocol import Event, LinkDecoder, Side, TelemetryUpdate
from .connection import QUALITY_UNKNOWN
from .utils import clamp


class SerialTransport:
    """Host serial capability: enumerate and open device ports via pyserial."""

    def __init__(self, cfg):
        ser_cfg = cfg["serial"]
        self._baud = int(ser_cfg["baud"])
        self._timeout = float(ser_cfg["timeout_ms"]) / 1000.0
        self._settle = float(ser_cfg.get("settle_ms", 300)) / 1000.0
        self._assert_signals = bool(ser_cfg.get("assert_signals", True))

    def available(self) -> bool:
        try:
            # pyserial raises ImportError here on platforms it has no backend for
            from serial.tools import list_ports  # noqa: F401
        except ImportError:
            return False
        return True

    def list_ports(self) -> List[str]:
        from serial.tools import list_ports
        return sorted(p.device for p in list_ports.comports())

    def open(self, port: str):
        ser = serial.Serial(
            port,
            self._baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=self._timeout,
            write_timeout=self._timeout,
        )
        if self._assert_signals:
            try:
                ser.dtr = True
                ser.rts = True
            except Exception:
                pass
        try:
            time.sleep(self._settle)
            ser.reset_input_buffer()
        except Exception:
            try:
                ser.close()
            except Exception:
                pass
            raise
        return ser


class SerialLink:
    """One open device port with its own framer, decoder and read loop."""

    READ_SIZE = 512

    def __init__(self, port: str, ser, decoder: LinkDecoder, debug: bool = False):
        self.port = port
        self._ser = ser
        self._decoder = decoder
        self._framer = LineFramer()
        self._text = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self._debug = debug
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.quality = QUALITY_UNKNOWN
        self.last_rx_at = 0.0
        self.is_open = True

    @property
    def side(self) -> Optional[Side]:
        return self._decoder.side

    @property
    def pending(self) -> str:
        return self._framer.pending

    def feed(self, chunk: str) -> List[Event]:
        events = []
        for record in self._framer.feed(chunk):
            if self._debug and record:
                print(f"[SERIAL] RX {self.port}: {record!r}")
            try:
                event = self._decoder.decode(record)
            except Exception as e:
                print(f"[SERIAL] Dropped record on {self.port}: {e}")
                continue
            if event is None:
                continue
            if isinstance(event, TelemetryUpdate) and event.quality is not None:
                self.quality = clamp(event.quality, 0.0, QUALITY_UNKNOWN)
            self.last_rx_at = time.time()
            events.append(event)
        return events

    def start(self, on_chunk: Callable[["SerialLink", str], None]):
        self._thread = threading.Thread(
            target=self._reader, args=(on_chunk,), name=f"link-{self.port}", daemon=True
        )
        self._thread.start()

    def _reader(self, on_chunk):
        try:
            while not self._stop.is_set():
                raw = self._ser.read(self.READ_SIZE)
                if not raw:
                    continue
                text = self._text.decode(raw)
                if text:
                    on_chunk(self, text)
        except Exception as e:
            if not self._stop.is_set():
                print(f"[SERIAL] Read exception on {self.port}: {e}")
        finally:
            self.is_open = False

    def close(self, join_timeout: float = 1.0):
        self._stop.set()
        try:
            self._ser.cancel_read()
        except Exception:
            pass
        try:
            self._ser.close()
        except Exception as e:
            print(f"[SERIAL] Close exception on {self.port}: {e}")
        if self._thread and self._thread is not threading.current_thread():
            try:
                self._thread.join(join_timeout)
            except Exception:
                pass
        self._framer.reset()
        self.is_open = False
