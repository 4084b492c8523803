"""Entrypoint.

Usage:
  python -m tokentrader.app.main engine [--config PATH] [--api]   # run the trading engine
  python -m tokentrader.app.main api [--config PATH]              # run the FastAPI server only
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

import uvicorn

from tokentrader.app.engine import run_engine
from tokentrader.infrastructure.logging.logging import configure_logging
from tokentrader.infrastructure.utils.config import load_config, set_config


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser("tokentrader")
    parser.add_argument("command", choices=["engine", "api"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--api", action="store_true", help="engine: also serve the API in-process")
    args = parser.parse_args(argv)

    if args.command == "engine":
        try:
            asyncio.run(run_engine(args.config, serve_api=args.api))
        except KeyboardInterrupt:
            pass
        return

    if args.command == "api":
        config = set_config(load_config(args.config, allow_defaults=True))
        configure_logging(config.log_level, json_logs=config.json_logs)
        uvicorn.run("tokentrader.api.server:app", host=config.api.host, port=config.api.port, reload=False)
        return


if __name__ == "__main__":
    main()
