import logging
import sys
from flask_migrate import upgrade
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from app import create_app
from config import Config, ConfigurationError

# Configure logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)


class MigrationConfig(Config):
    # Schema comes from the migration scripts, not create_all()
    CREATE_TABLES = False


def main():
    try:
        Config.validate()
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    # Test database connection
    try:
        engine = create_engine(Config.BACKEND_URL)
        with engine.connect():
            logger.info("Database connection successful")
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        return 1

    app = create_app(MigrationConfig)
    with app.app_context():
        try:
            upgrade()  # Apply migrations
            logger.info("Database migrations applied successfully")
        except Exception as e:
            logger.error(f"Failed to apply migrations: {e}")
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
