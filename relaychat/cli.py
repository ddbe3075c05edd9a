from __future__ import annotations

import argparse
import os
import sys
from dataclasses import replace
from pathlib import Path

from .config import RelayRuntimeConfig, load_config
from .logging_config import configure_logging
from .service import RelayService
from .util import expand_path

DEFAULT_CONFIG = """# relaychat configuration (TOML)
#
# Every key is optional; command line flags override values set here.

[relay]

# Address and port to listen on.
host = "0.0.0.0"
port = 9001
backlog = 16

# Nickname policy.
# Maximum accepted name length (Unicode characters). 0 disables length limiting.
name_max_chars = 0

# Close a connection after this many rejected names (0 = keep asking).
max_name_attempts = 0

# Lines buffered per client before further lines to it are dropped.
send_queue_max = 256

[logging]

level = "INFO"

# Log to stderr.
console = true

# Optional file path for logs (leave empty to disable).
file = ""

format = "%(asctime)s %(levelname)s %(name)s[%(threadName)s]: %(message)s"
datefmt = ""

# Per-component levels (service, session, registry, router, connection, client).
# [logging.levels]
# router = "DEBUG"
"""


def default_config_path() -> Path:
    home = os.environ.get("RELAYCHAT_HOME")
    base = Path(home) if home else Path.home() / ".relaychat"
    return base / "relaychat.toml"


def _write_default_config(config_path: str) -> None:
    path = Path(config_path)
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG, encoding="utf-8")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="relaychat", description="Run a relaychat server")

    p.add_argument(
        "--config",
        default=str(default_config_path()),
        help="Path to a TOML config file (optional)",
    )
    p.add_argument(
        "--write-config",
        action="store_true",
        help="Write a default config file to --config and exit",
    )

    p.add_argument("--host", default=None, help="Listen address (default: 0.0.0.0)")
    p.add_argument("--port", type=int, default=None, help="Listen port (default: 9001)")
    p.add_argument("--backlog", type=int, default=None, help="Listen backlog")

    p.add_argument(
        "--name-max-chars",
        type=int,
        default=None,
        help="Maximum name length (0 disables)",
    )
    p.add_argument(
        "--max-name-attempts",
        type=int,
        default=None,
        help="Disconnect after this many rejected names (0 disables)",
    )
    p.add_argument(
        "--send-queue-max",
        type=int,
        default=None,
        help="Per-client outbound line buffer",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig()

    config_path = expand_path(str(args.config)) if args.config else ""
    if config_path and os.path.exists(config_path):
        cfg = load_config(config_path, cfg)

    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.backlog is not None:
        cfg = replace(cfg, backlog=int(args.backlog))

    if args.name_max_chars is not None:
        cfg = replace(cfg, name_max_chars=int(args.name_max_chars))
    if args.max_name_attempts is not None:
        cfg = replace(cfg, max_name_attempts=int(args.max_name_attempts))
    if args.send_queue_max is not None:
        cfg = replace(cfg, send_queue_max=int(args.send_queue_max))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    return cfg


def main(argv: list[str] | None = None) -> None:
    args = _build_arg_parser().parse_args(sys.argv[1:] if argv is None else argv)

    if args.write_config:
        _write_default_config(expand_path(str(args.config)))
        print(f"Wrote default config to {args.config}", file=sys.stderr)
        raise SystemExit(0)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        print(f"relaychat: invalid config {args.config}: {e}", file=sys.stderr)
        raise SystemExit(1) from e

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)

    svc = RelayService(cfg)
    try:
        svc.start()
    except OSError as e:
        print(
            f"relaychat: cannot listen on {cfg.host}:{cfg.port}: {e}", file=sys.stderr
        )
        raise SystemExit(1) from e
    svc.run_forever()


if __name__ == "__main__":
    main()
