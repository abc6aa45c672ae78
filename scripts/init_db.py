"""Create the Huddle database schema on the configured database."""

from __future__ import annotations

import argparse
import logging
import sys

from sqlalchemy import create_engine

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--database-url",
        help="SQLAlchemy URL to initialise instead of the one from the settings",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    from app.database import engine, init_db

    target = create_engine(args.database_url, future=True) if args.database_url else engine
    try:
        init_db(target)
    except Exception:
        logger.exception("Failed to initialise database schema")
        return 1
    logger.info("Database schema ready at %s", target.url.render_as_string(hide_password=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
