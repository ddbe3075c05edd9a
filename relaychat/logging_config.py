"""Logging setup for the relay.

Every component logs under the `relaychat` namespace (`relaychat.registry`,
`relaychat.session`, ...). The root logger gets the handlers; individual
components can be turned up or down with `[logging.levels]` in the config
file, keyed by the short component name.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .config import RelayRuntimeConfig

LOGGER_NAMESPACE = "relaychat"

COMPONENTS = ("service", "session", "registry", "router", "connection", "client")

DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def resolve_level(value: str | int | None, default: int = logging.INFO) -> int:
    if value is None:
        return default
    if isinstance(value, int):
        return value

    text = str(value).strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    if text == "WARN":
        text = "WARNING"
    return logging.getLevelNamesMapping().get(text, default)


def component_logger_name(component: str) -> str:
    component = component.strip()
    if component == LOGGER_NAMESPACE or component.startswith(LOGGER_NAMESPACE + "."):
        return component
    return f"{LOGGER_NAMESPACE}.{component}"


def _build_handlers(cfg: RelayRuntimeConfig, log_file: str | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []
    if cfg.log_console:
        handlers.append(logging.StreamHandler())
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(path, encoding="utf-8"))
    return handlers


def configure_logging(
    cfg: RelayRuntimeConfig,
    *,
    override_level: str | None = None,
    override_file: str | None = None,
) -> None:
    """Install handlers on the root logger and apply per-component levels.

    Existing root handlers are replaced, so repeated calls do not duplicate
    output. An empty `override_file` disables file logging.
    """
    level = resolve_level(override_level or cfg.log_level)

    log_file = cfg.log_file
    if override_file is not None:
        log_file = override_file.strip() or None

    formatter = logging.Formatter(
        fmt=(cfg.log_format or "").strip() or DEFAULT_FORMAT,
        datefmt=cfg.log_datefmt or None,
    )

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    for h in _build_handlers(cfg, log_file):
        h.setFormatter(formatter)
        root.addHandler(h)
    root.setLevel(level)

    # Component overrides; anything not listed inherits the root level.
    for component in COMPONENTS:
        logging.getLogger(component_logger_name(component)).setLevel(logging.NOTSET)
    for component, value in cfg.log_levels:
        logging.getLogger(component_logger_name(component)).setLevel(
            resolve_level(value, level)
        )

    logging.captureWarnings(True)
