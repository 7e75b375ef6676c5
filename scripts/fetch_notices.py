# scripts/fetch_notices.py

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from sqlalchemy.exc import SQLAlchemyError

from marches_ted.collectors.notice_client import (
    NoticeProbeConfig,
    fetch_notice_by_id,
    fetch_notice_from_page,
    iter_notice_range,
)
from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.models.notice import build_run_id
from marches_ted.persistence.db import create_schema, make_engine
from marches_ted.persistence.sink import NoticeSink
from marches_ted.services.ingestion import ingest_documents, log_summary

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("fetch_notices")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=(
            "Récupère des avis TED un par un (sondage d'une plage d'identifiants, "
            "page de détail ou identifiant unique) et les ingère comme l'archive quotidienne."
        ),
    )
    parser.add_argument("--url", help="page de détail d'un avis (ex: https://ted.europa.eu/en/notice/-/detail/608908-2025)")
    parser.add_argument("--id", dest="native_id", help="identifiant natif d'un avis (ex: 608908-2025)")
    parser.add_argument("--year", type=int, help="année des identifiants sondés")
    parser.add_argument("--start", type=int, help="premier numéro (le plus haut)")
    parser.add_argument("--end", type=int, help="dernier numéro (le plus bas)")
    parser.add_argument("--max-miss", type=int, default=NoticeProbeConfig.max_misses)
    parser.add_argument(
        "--date",
        type=date.fromisoformat,
        default=None,
        help="date de repli pour published_at (défaut: aujourd'hui)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    single = args.url or args.native_id
    if args.url and args.native_id:
        parser.error("--url et --id sont exclusifs")
    if not single and None in (args.year, args.start, args.end):
        parser.error("--url, --id, ou bien --year, --start et --end sont requis")
    if not single and args.start < args.end:
        parser.error("--start doit être >= --end (sondage descendant)")

    config = IngestConfig.from_env()
    client = TedClient(config)
    fallback_date = args.date or date.today()

    if args.url:
        try:
            doc = fetch_notice_from_page(client, args.url)
        except RuntimeError as exc:
            logger.error("%s", exc)
            return 1
        documents = [doc] if doc is not None else []
    elif args.native_id:
        doc = fetch_notice_by_id(client, args.native_id)
        documents = [doc] if doc is not None else []
    else:
        probe = NoticeProbeConfig(max_misses=args.max_miss)
        documents = iter_notice_range(client, args.year, args.start, args.end, probe)

    engine = make_engine(config.database_url)
    try:
        create_schema(engine)
        sink = NoticeSink(engine, source=config.source, max_bind_params=config.max_bind_params)
        # Écriture au fil de l'eau : un sondage peut durer longtemps
        summary = ingest_documents(
            documents,
            fallback_date,
            sink,
            build_run_id(None, fallback_date),
            flush_every=50,
            source=config.source,
            base_url=config.base_url,
        )
    except SQLAlchemyError as exc:
        logger.error("Erreur base de données: %s", exc)
        return 1
    finally:
        engine.dispose()

    log_summary(summary)
    return 0 if summary.ok else 3


if __name__ == "__main__":
    sys.exit(main())
