from __future__ import annotations

import argparse
import logging
import os

import uvicorn

from calsync.config_manager import ConfigManager
from calsync.sync_engine import SyncEngine


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Keep a Google Calendar in sync with an ICS feed")
    parser.add_argument("--once", action="store_true", help="Run a single sync pass and exit")
    parser.add_argument(
        "--config",
        default=os.getenv("CALSYNC_CONFIG_PATH", "config.yaml"),
        help="Path to the YAML config file",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    os.environ["CALSYNC_CONFIG_PATH"] = args.config
    config_manager = ConfigManager(args.config)
    config = config_manager.load()
    logging.basicConfig(level=config.logging.level, format=LOG_FORMAT)

    if args.once:
        report = SyncEngine(config_manager).run_once(trigger="cli")
        return 1 if report.status == "error" else 0

    host = os.getenv("CALSYNC_HOST", "0.0.0.0")
    port = int(os.getenv("CALSYNC_PORT", "8080"))
    uvicorn.run("calsync.web_admin:create_app", factory=True, host=host, port=port, reload=False)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
