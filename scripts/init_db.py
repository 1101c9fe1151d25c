import logging

from catalog.db.session import current_engine_url, init_db

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main():
    logger.info("Initializing database schema at %s...", current_engine_url())
    init_db()
    logger.info("Database schema initialized successfully.")


if __name__ == "__main__":
    main()
