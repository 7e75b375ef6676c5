# scripts/ingest_daily_package.py

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.errors import IngestionError
from marches_ted.persistence.db import create_schema, make_engine
from marches_ted.persistence.sink import NoticeSink
from marches_ted.services.ingestion import run_daily_ingestion

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("ingest_daily_package")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_USAGE = 2
EXIT_PARTIAL = 3


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"date invalide (YYYY-MM-DD attendu): {value!r}") from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ingestion de l'archive quotidienne TED (XML bruts + staging).",
    )
    parser.add_argument("--date", required=True, type=parse_date, help="date cible YYYY-MM-DD")
    parser.add_argument("--issue", default=None, help="identifiant d'archive (ex: 202500198), sinon résolu")
    parser.add_argument(
        "--flush-every",
        type=int,
        default=None,
        help="écrit en base tous les N avis au lieu d'une seule fois en fin de run",
    )
    parser.add_argument("--init-db", action="store_true", help="crée les tables avant l'ingestion")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.flush_every is not None and args.flush_every < 1:
        logger.error("--flush-every doit être >= 1")
        return EXIT_USAGE

    try:
        config = IngestConfig.from_env()
    except ValueError as exc:
        logger.error("Configuration invalide: %s", exc)
        return EXIT_USAGE

    engine = make_engine(config.database_url)
    try:
        if args.init_db:
            create_schema(engine)

        client = TedClient(config)
        sink = NoticeSink(engine, source=config.source, max_bind_params=config.max_bind_params)

        summary = run_daily_ingestion(
            args.date,
            issue_id=args.issue,
            client=client,
            sink=sink,
            config=config,
            flush_every=args.flush_every,
        )
    except IngestionError as exc:
        logger.error("Échec fatal: %s", exc)
        partial = exc.summary
        if partial is not None and (partial.records_written or partial.raw_written):
            logger.warning(
                "Run interrompu après écriture partielle: %d avis, %d XML bruts (run_id=%s)",
                partial.records_written,
                partial.raw_written,
                partial.run_id,
            )
        return EXIT_FATAL
    except SQLAlchemyError as exc:
        logger.error("Erreur base de données: %s", exc)
        return EXIT_FATAL
    finally:
        engine.dispose()

    if not summary.ok:
        logger.warning("Run terminé avec %d lignes en échec.", summary.failed_rows)
        return EXIT_PARTIAL

    logger.info("✅ Run terminé: %s", summary.run_id)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
