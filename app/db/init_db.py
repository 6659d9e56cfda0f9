# app/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect

from app.db.session import engine
from app.db.base import Base

# Import all models so metadata is complete
from app import models  # noqa: F401

logger = logging.getLogger(__name__)


def run(fresh: bool = False) -> None:
    if fresh:
        logger.warning("Dropping ALL tables (dev only) …")
        Base.metadata.drop_all(bind=engine)

    logger.info("Creating all missing tables …")
    Base.metadata.create_all(bind=engine)

    names = sorted(inspect(engine).get_table_names())
    logger.info("Existing tables: %s", names)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(
        description="Initialize DB (create dosing engine tables).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh)
