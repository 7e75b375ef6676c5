# scripts/save_raw_daily.py

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from marches_ted.collectors.package_stream import PackageStats, stream_package
from marches_ted.collectors.ted_client import TedClient
from marches_ted.config import IngestConfig
from marches_ted.errors import IngestionError
from marches_ted.persistence.paths import issue_dir
from marches_ted.persistence.raw_files import save_documents_to_dir

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(name)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

logger = logging.getLogger("save_raw_daily")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Télécharge une archive quotidienne TED et écrit ses XML sur disque (sans base).",
    )
    parser.add_argument("--issue", required=True, help="identifiant d'archive (ex: 202500198)")
    parser.add_argument("--out", type=Path, default=None, help="dossier de sortie (défaut: data/raw/issue-<ID>)")
    args = parser.parse_args(argv)

    config = IngestConfig.from_env()
    out_dir = args.out or issue_dir(args.issue)

    stats = PackageStats()
    try:
        written = save_documents_to_dir(out_dir, stream_package(TedClient(config), args.issue, stats))
    except IngestionError as exc:
        logger.error("Échec: %s", exc)
        return 1

    logger.info("Entrées de l'archive : %d", stats.total_entries)
    logger.info("Fichiers XML écrits  : %d", written)
    logger.info("Dossier              : %s", out_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
