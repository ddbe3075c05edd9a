from __future__ import annotations

from dataclasses import asdict, dataclass, replace

from .constants import DEFAULT_PORT, NAME_MAX_CHARS


@dataclass(frozen=True)
class RelayRuntimeConfig:
    config_path: str | None = None
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    backlog: int = 16
    name_max_chars: int = NAME_MAX_CHARS
    max_name_attempts: int = 0
    send_queue_max: int = 256
    log_level: str = "INFO"
    log_console: bool = True
    log_file: str | None = None
    log_format: str = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
    log_datefmt: str | None = None
    # (component, level) pairs from [logging.levels], e.g. ("router", "DEBUG").
    log_levels: tuple[tuple[str, str], ...] = ()


_LOGGING_KEYS = {
    "level": "log_level",
    "console": "log_console",
    "file": "log_file",
    "format": "log_format",
    "datefmt": "log_datefmt",
    "levels": "log_levels",
}

_INT_KEYS = ("port", "backlog", "name_max_chars", "max_name_attempts", "send_queue_max")


def load_toml(path: str) -> dict:
    import tomllib

    with open(path, "rb") as f:
        data = tomllib.load(f)
    return data if isinstance(data, dict) else {}


def apply_config_data(base: RelayRuntimeConfig, data: dict) -> RelayRuntimeConfig:
    relay = data.get("relay") if isinstance(data, dict) else None
    if isinstance(relay, dict):
        data = {**data, **relay}

    log_table = data.get("logging") if isinstance(data, dict) else None
    if isinstance(log_table, dict):
        mapped = {
            field: log_table.get(key)
            for key, field in _LOGGING_KEYS.items()
            if key in log_table
        }
        data = {**data, **mapped}

    allowed = set(asdict(base).keys())
    # This identifies where the config came from; do not let the file override it.
    allowed.discard("config_path")
    updates = {k: v for k, v in data.items() if k in allowed}

    for key in _INT_KEYS:
        if key in updates:
            try:
                updates[key] = int(updates[key])
            except (TypeError, ValueError) as e:
                raise ValueError(f"{key} must be an integer: {updates[key]!r}") from e

    if "log_console" in updates:
        updates["log_console"] = bool(updates["log_console"])
    if "log_file" in updates and updates["log_file"] == "":
        updates["log_file"] = None
    if "log_datefmt" in updates and updates["log_datefmt"] == "":
        updates["log_datefmt"] = None
    if "log_levels" in updates:
        levels = updates["log_levels"]
        if not isinstance(levels, dict):
            raise ValueError(f"logging.levels must be a table: {levels!r}")
        updates["log_levels"] = tuple(
            (str(component), str(level)) for component, level in sorted(levels.items())
        )

    return replace(base, **updates) if updates else base


def load_config(path: str, base: RelayRuntimeConfig | None = None) -> RelayRuntimeConfig:
    cfg = base or RelayRuntimeConfig()
    cfg = apply_config_data(cfg, load_toml(path))
    return replace(cfg, config_path=path)
