import os
import threading
from typing import Callable, List, Optional, Sequence

import yaml

from .connection import ConnectionBoard
from .protocol import Event, LinkDecoder, Side
from .serial_link import SerialLink, SerialTransport


MAX_LINKS = 2

Chooser = Callable[[Sequence[str]], Optional[str]]


class AuthorizedPorts:
    """Ports the operator has paired before, kept in a small YAML file."""

    def __init__(self, path: str):
        self._path = os.path.expanduser(path)

    def load(self) -> List[str]:
        if not os.path.exists(self._path):
            return []
        with open(self._path, "r") as f:
            data = yaml.safe_load(f) or {}
        return [str(p) for p in data.get("ports", []) or []]

    def add(self, port: str):
        ports = self.load()
        if port in ports:
            return
        ports.append(port)
        parent = os.path.dirname(self._path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(self._path, "w") as f:
            yaml.safe_dump({"ports": ports}, f, default_flow_style=False)


def console_chooser(candidates: Sequence[str]) -> Optional[str]:
    if not candidates:
        print("[PAIR] No serial ports available")
        return None
    for i, port in enumerate(candidates, 1):
        print(f"  {i}) {port}")
    answer = input("Port to pair (blank to skip): ").strip()
    if not answer:
        return None
    if answer.isdigit() and 1 <= int(answer) <= len(candidates):
        return candidates[int(answer) - 1]
    return answer


class LinkManager:
    def __init__(self, cfg, board: ConnectionBoard, sink: Callable[[Event], None],
                 transport=None, authorized: Optional[AuthorizedPorts] = None):
        ser_cfg = cfg["serial"]
        self._configured_ports = list(ser_cfg.get("ports") or [])
        self._allow_rebind = bool(cfg.get("decoder", {}).get("allow_rebind", True))
        self._debug = bool(cfg.get("logging", {}).get("debug_serial", False))
        self._board = board
        self._sink = sink
        self._transport = transport
        self._authorized = authorized or AuthorizedPorts(ser_cfg["authorized_path"])
        self._links: List[SerialLink] = []
        self._lock = threading.Lock()
        self._pairing = False
        self.disabled = False
        if transport is None or not transport.available():
            self._disable()

    @classmethod
    def from_config(cls, cfg, board: ConnectionBoard, sink: Callable[[Event], None]):
        return cls(cfg, board, sink, transport=SerialTransport(cfg))

    def _disable(self):
        self.disabled = True
        self._board.mark_error()
        print("[SERIAL] No serial support on this host, connections disabled")

    @property
    def links(self) -> List[SerialLink]:
        with self._lock:
            return list(self._links)

    @property
    def pairing(self) -> bool:
        return self._pairing

    def _holds(self, port: str) -> bool:
        return any(link.port == port for link in self.links)

    def _open(self, port: str) -> Optional[SerialLink]:
        self._board.mark_connecting()
        try:
            ser = self._transport.open(port)
        except Exception as e:
            print(f"[SERIAL] Could not open {port}: {e}")
            return None
        link = SerialLink(port, ser, LinkDecoder(allow_rebind=self._allow_rebind), debug=self._debug)
        with self._lock:
            self._links.append(link)
        link.start(self.ingest)
        print(f"[SERIAL] Opened {port}")
        return link

    def reopen_authorized(self) -> List[SerialLink]:
        if self.disabled:
            return []
        ports = []
        for port in self._authorized.load() + self._configured_ports:
            if port not in ports:
                ports.append(port)
        opened = []
        for port in ports:
            if len(self.links) >= MAX_LINKS:
                break
            if self._holds(port):
                continue
            link = self._open(port)
            if link is not None:
                opened.append(link)
        return opened

    def pair_missing(self, chooser: Optional[Chooser] = None) -> List[SerialLink]:
        if self.disabled:
            return []
        with self._lock:
            if self._pairing or len(self._links) >= MAX_LINKS:
                return []
            self._pairing = True
        chooser = chooser or console_chooser
        opened = []
        try:
            while len(self.links) < MAX_LINKS:
                held = {link.port for link in self.links}
                candidates = [p for p in self._transport.list_ports() if p not in held]
                self._board.mark_connecting()
                port = chooser(candidates)
                if not port:
                    print("[PAIR] Pairing stopped")
                    break
                if port in held:
                    print(f"[PAIR] {port} is already paired")
                    continue
                link = self._open(port)
                if link is None:
                    break
                self._authorized.add(port)
                opened.append(link)
        except Exception as e:
            print(f"[PAIR] Pairing failed: {e}")
        finally:
            self._pairing = False
        return opened

    def ingest(self, link: SerialLink, chunk: str) -> List[Event]:
        events = link.feed(chunk)
        for event in events:
            self._sink(event)
        return events

    def quality(self, side: Side) -> float:
        return self._board.quality(side)

    def link_for(self, side: Side) -> Optional[SerialLink]:
        for link in self.links:
            if link.side is side:
                return link
        return None

    def drop_closed(self) -> List[SerialLink]:
        """Forget links whose read loop has ended so pairing can replace them."""
        with self._lock:
            dead = [link for link in self._links if not link.is_open]
            self._links = [link for link in self._links if link.is_open]
        for link in dead:
            link.close()
            print(f"[SERIAL] Link {link.port} lost")
        return dead

    def close_all(self):
        with self._lock:
            links, self._links = self._links, []
        for link in links:
            try:
                link.close()
            except Exception as e:
                print(f"[SERIAL] Teardown of {link.port} failed: {e}")
