"""CLI entry point: ties together configuration, logging and the console."""

from __future__ import annotations

import argparse
import logging
import sys

from mamuk_session.config import DEFAULT_CONFIG_PATH, load_settings
from mamuk_session.errors import ConfigError


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mamuk session: sign in and exercise role-gated navigation",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to settings.yaml (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--routes",
        default=None,
        help="Path to routes.yaml (default: policies/routes.yaml)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except ConfigError as exc:
        logging.getLogger(__name__).error("%s", exc)
        sys.exit(2)

    from mamuk_session.prompt.cli import run_cli

    run_cli(settings, routes_path=args.routes)


if __name__ == "__main__":
    main()
