import argparse
import os
import yaml

from .errors import ConfigError


PROFILES = ("gen1", "gen2")


def _deep_update(base: dict, override: dict) -> dict:
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _deep_update(base[k], v)
        else:
            base[k] = v
    return base


def _read_yaml(path: str) -> dict:
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def load_config(argv=None) -> dict:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--profile", choices=PROFILES, default=None)
    parser.add_argument("--config", default=None)
    args, _ = parser.parse_known_args(argv)

    # Packaged defaults live next to this module
    root = os.path.join(os.path.dirname(__file__), "conf")
    data = _read_yaml(os.path.join(root, "default.yaml"))

    if args.profile:
        prof_path = os.path.join(root, "profiles", f"{args.profile}.yaml")
        if os.path.exists(prof_path):
            data = _deep_update(data, _read_yaml(prof_path))

    if args.config:
        if not os.path.exists(args.config):
            raise ConfigError(f"config file not found: {args.config}")
        data = _deep_update(data, _read_yaml(args.config))

    return normalize(data)


def normalize(data: dict) -> dict:
    data.setdefault("serial", {})
    data["serial"].setdefault("baud", 115200)
    data["serial"].setdefault("timeout_ms", 100)
    data["serial"].setdefault("settle_ms", 300)
    data["serial"].setdefault("assert_signals", True)
    data["serial"].setdefault("ports", [])
    data["serial"].setdefault("authorized_path", "~/.mindrace/authorized_ports.yaml")
    data["serial"].setdefault("reconnect_ms", 2000)
    data.setdefault("pairing_seconds", 30)
    data.setdefault("race", {})
    data["race"].setdefault("tick_ms", 30)
    data["race"].setdefault("default_laps_total", 10)
    data["race"].setdefault("gate_relax_threshold", 50)
    data["race"].setdefault("blink_hold_ms", 220)
    data.setdefault("decoder", {})
    data["decoder"].setdefault("allow_rebind", True)
    data.setdefault("watchdog", {})
    data["watchdog"].setdefault("stale_ms", 2000)
    data.setdefault("logging", {})
    data["logging"].setdefault("csv_path", "logs/race_telemetry.csv")
    data["logging"].setdefault("console_hud", True)
    data["logging"].setdefault("debug_serial", False)
    data["logging"].setdefault("hud_period_ms", 500)
    data.setdefault("ranking", {})
    data["ranking"].setdefault("path", "~/.mindrace/ranking.csv")

    try:
        if int(data["serial"]["baud"]) <= 0:
            raise ConfigError("serial.baud must be positive")
        if int(data["race"]["default_laps_total"]) < 1:
            raise ConfigError("race.default_laps_total must be at least 1")
        if float(data["race"]["tick_ms"]) <= 0:
            raise ConfigError("race.tick_ms must be positive")
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid config value: {e}") from e
    return data
