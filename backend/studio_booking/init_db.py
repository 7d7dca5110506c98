"""Create the schema on a fresh database (local development and SQLite deployments)."""

import logging

from .database import Base, engine
from . import models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
