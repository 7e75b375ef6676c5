# scripts/upload_raw_xml.py

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from typing import Iterable, Iterator, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from marches_ted.collectors.issue_resolver import WIDE_WINDOW, IssueResolver
from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.errors import IngestionError
from marches_ted.models.notice import RawNoticeDocument
from marches_ted.persistence.db import create_schema, make_engine
from marches_ted.persistence.paths import issue_dir
from marches_ted.persistence.raw_files import iter_xml_dir
from marches_ted.persistence.sink import NoticeSink
from marches_ted.services.native_id import native_id_from_filename, native_id_from_raw_xml

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("upload_raw_xml")


def native_id_for(doc: RawNoticeDocument) -> Optional[str]:
    """Identifiant natif : texte XML d'abord, nom de fichier ensuite."""
    return native_id_from_raw_xml(doc.text()) or native_id_from_filename(doc.member_name)


def raw_rows(documents: Iterable[RawNoticeDocument]) -> Iterator[Tuple[Optional[str], str]]:
    for doc in documents:
        native_id = native_id_for(doc)
        if not native_id:
            logger.warning("Identifiant introuvable, fichier ignoré: %s", doc.member_name)
        yield native_id, doc.text()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Envoie en base (ted_raw_xml) les XML bruts d'un dossier data/raw/issue-<ID>.",
    )
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--issue", help="identifiant d'archive (ex: 202500179)")
    group.add_argument("--date", type=date.fromisoformat, help="date YYYY-MM-DD, résolue en identifiant")
    args = parser.parse_args(argv)

    config = IngestConfig.from_env()

    issue_id = args.issue
    if not issue_id:
        try:
            resolver = IssueResolver.from_client(TedClient(config), window=WIDE_WINDOW)
            issue_id = resolver.resolve(args.date)
        except IngestionError as exc:
            logger.error("%s", exc)
            return 1

    raw_dir = issue_dir(issue_id)
    if not raw_dir.is_dir():
        logger.error("Dossier introuvable: %s", raw_dir)
        return 1

    engine = make_engine(config.database_url)
    try:
        create_schema(engine)
        sink = NoticeSink(engine, source=config.source, max_bind_params=config.max_bind_params)
        logger.info("Envoi des XML de %s (archive %s)...", raw_dir, issue_id)
        result = sink.upsert_raw_documents(raw_rows(iter_xml_dir(raw_dir)))
    except SQLAlchemyError as exc:
        logger.error("Erreur base de données: %s", exc)
        return 1
    finally:
        engine.dispose()

    if not result.batches:
        logger.info("Aucun fichier XML à envoyer dans %s", raw_dir)
        return 0

    logger.info("XML bruts envoyés : %d (en échec: %d)", result.written, result.failed)
    return 3 if result.failed else 0


if __name__ == "__main__":
    sys.exit(main())
