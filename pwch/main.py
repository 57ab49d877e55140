from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

import uvicorn

from . import db
from .config import DEFAULT_CONFIG_PATH, load_settings
from .exceptions import ConfigError
from .log import setup_logging
from .version import package_version, version_report

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pwch",
        description="Self-service password change for mail accounts.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Changes default path from where to read the config file "
        f"(default: $PWCH_CONFIG or {DEFAULT_CONFIG_PATH}).",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print version and build info.",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging.")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    if sys.version_info < (3, 11):
        raise RuntimeError("pwch requires Python 3.11+")

    args = _build_parser().parse_args(argv)
    if args.version:
        print(version_report("pwch"))
        return

    setup_logging(debug=args.debug)
    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        logger.error("%s", e.message)
        raise SystemExit(1)

    db.configure(settings.db_path)
    db.init_db()

    from .web_app import create_app

    app = create_app(settings)
    logger.info("pwch %s", package_version())
    logger.info(
        "Listening on %s:%s",
        settings.server.listen_address,
        settings.server.port,
    )
    uvicorn.run(
        app,
        host=settings.server.listen_address,
        port=settings.server.port,
        log_level="debug" if args.debug else "info",
    )


if __name__ == "__main__":
    main()
