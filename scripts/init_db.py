# scripts/init_db.py

from __future__ import annotations

import logging
import sys

from sqlalchemy.exc import SQLAlchemyError

from marches_ted.config import IngestConfig
from marches_ted.persistence.db import check_connection, create_schema, make_engine

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("init_db")


def main() -> int:
    config = IngestConfig.from_env()
    engine = make_engine(config.database_url)
    try:
        if not check_connection(engine):
            return 1
        create_schema(engine)
    except SQLAlchemyError as exc:
        logger.error("Création du schéma impossible: %s", exc)
        return 1
    finally:
        engine.dispose()

    logger.info("✅ Schéma prêt (%s)", engine.url.render_as_string(hide_password=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
