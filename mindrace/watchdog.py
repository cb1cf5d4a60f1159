import time


class Watchdog:
    """Reports links that stop sending and come back.

    Status never regresses on silence; this only informs the operator.
    """

    def __init__(self, cfg, links):
        self._stale_s = float(cfg.get("watchdog", {}).get("stale_ms", 2000)) / 1000.0
        self._links = links
        self._stale = set()

    def tick(self, now=None):
        now = time.time() if now is None else now
        reported = []
        for link in self._links.links:
            if not link.last_rx_at:
                continue
            silent = now - link.last_rx_at >= self._stale_s
            if silent and link.port not in self._stale:
                self._stale.add(link.port)
                side = link.side.value if link.side else "unbound"
                print(f"[WATCHDOG] {link.port} ({side}) silent for {now - link.last_rx_at:.1f}s")
                reported.append(link.port)
            elif not silent and link.port in self._stale:
                self._stale.discard(link.port)
                print(f"[WATCHDOG] {link.port} receiving again")
        return reported
