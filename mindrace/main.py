#!/usr/bin/env python3
import argparse
import time

from .config import load_config
from .errors import RaceNotReadyError
from .link_manager import LinkManager
from .protocol import Side
from .race import RaceSession
from .ranking import Player, RankingStore, record_results
from .telemetry import TelemetryLogger
from .utils import format_final
from .watchdog import Watchdog


def _players(argv=None):
    parser = argparse.ArgumentParser(add_help=False)
    for side in Side:
        parser.add_argument(f"--{side.value}-name", default="")
        parser.add_argument(f"--{side.value}-phone", default="")
    args, _ = parser.parse_known_args(argv)
    players = {}
    for side in Side:
        first, _, last = getattr(args, f"{side.value}_name").partition(" ")
        players[side] = Player(side=side, identity=getattr(args, f"{side.value}_phone"),
                               first_name=first, last_name=last)
    return players


def _wait_for_connection(cfg, session, links):
    deadline = time.time() + max(0, int(cfg.get("pairing_seconds", 30)))
    tick_s = float(cfg["race"]["tick_ms"]) / 1000.0
    while time.time() < deadline and session.board.connected_count() < 1:
        session.tick()
        links.drop_closed()
        time.sleep(tick_s)
    statuses = session.board.snapshot()
    print("[PAIR] " + ", ".join(f"{s.label}: {st.value}" for s, st in statuses.items()))


def _print_result(session):
    outcome = session.outcome
    for side in Side:
        c = session.competitor(side)
        print(f"{side.label}: {format_final(c.finish_ms)} ({c.laps}/{c.laps_total})")
    if outcome is not None:
        print(f"Winner: {outcome.winner.value.upper()} - {outcome.description}")


def _print_ranking(store):
    print("RANKING")
    for i, entry in enumerate(store.top(8), 1):
        name = entry.display_name or entry.side
        print(f"{i:>2} {name:<30} {format_final(entry.finish_time_ms)}")


def run(argv=None):
    cfg = load_config(argv)
    players = _players(argv)
    session = RaceSession(cfg)
    links = LinkManager.from_config(cfg, session.board, session.submit)
    telemetry = TelemetryLogger()
    telemetry.configure(cfg)
    watchdog = Watchdog(cfg, links)
    store = RankingStore(cfg["ranking"]["path"])
    tick_s = float(cfg["race"]["tick_ms"]) / 1000.0

    try:
        try:
            links.reopen_authorized()
            if len(links.links) < 2:
                links.pair_missing()
            _wait_for_connection(cfg, session, links)
        except KeyboardInterrupt:
            print("[PAIR] Interrupted before the race started")
            return 1
        try:
            session.start()
        except RaceNotReadyError:
            print("[RACE] No device connected, nothing to race")
            return 1
        reconnect_s = float(cfg["serial"]["reconnect_ms"]) / 1000.0
        reconnect_at = 0.0
        try:
            while session.outcome is None:
                session.tick()
                links.drop_closed()
                # lost devices come back through the authorized list, never by prompting
                if len(links.links) < 2 and not links.disabled and time.time() >= reconnect_at:
                    links.reopen_authorized()
                    reconnect_at = time.time() + reconnect_s
                watchdog.tick()
                telemetry.tick(session)
                time.sleep(tick_s)
        except KeyboardInterrupt:
            session.finalize_manually()
        _print_result(session)
        record_results(session, players, store)
        _print_ranking(store)
    finally:
        links.close_all()
        telemetry.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(run())
