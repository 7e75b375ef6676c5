# run_pipeline.py
from __future__ import annotations

import argparse
import os
import subprocess
import sys
from datetime import date, datetime
from pathlib import Path

ROOT = Path(__file__).resolve().parent
SRC_DIR = ROOT / "src"
SCRIPTS_DIR = ROOT / "scripts"
INGEST_SCRIPT = SCRIPTS_DIR / "ingest_daily_package.py"


def build_env() -> dict[str, str]:
    # On part de l'env courant
    env = os.environ.copy()

    # On préfixe le PYTHONPATH avec src/
    existing = env.get("PYTHONPATH", "")
    new_pythonpath = str(SRC_DIR)
    if existing:
        new_pythonpath += os.pathsep + existing
    env["PYTHONPATH"] = new_pythonpath
    return env


def resolve_issue(target_date: date) -> str:
    # src/ n'est pas forcément installé : on l'ajoute au chemin avant import
    if str(SRC_DIR) not in sys.path:
        sys.path.insert(0, str(SRC_DIR))

    from marches_ted.collectors.issue_resolver import IssueResolver
    from marches_ted.collectors.ted_client import TedClient
    from marches_ted.config import IngestConfig

    config = IngestConfig.from_env()
    return IssueResolver.from_client(TedClient(config)).resolve(target_date)


def run_ingestion(target_date: date, issue_id: str) -> int:
    cmd = [
        sys.executable,
        str(INGEST_SCRIPT),
        f"--date={target_date.isoformat()}",
        f"--issue={issue_id}",
    ]
    print(f"-> python {INGEST_SCRIPT.relative_to(ROOT)} --date={target_date.isoformat()} --issue={issue_id}")

    result = subprocess.run(cmd, cwd=str(ROOT), env=build_env(), check=False)
    return result.returncode


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Résout l'archive TED d'une date puis lance l'ingestion.",
    )
    parser.add_argument("--date", required=True, type=date.fromisoformat, help="date cible YYYY-MM-DD")
    args = parser.parse_args()

    print("============================================")
    print("  Ingestion quotidienne TED")
    print("============================================")
    print(f"Racine projet : {ROOT}")
    print(f"Date/heure    : {datetime.now().isoformat(timespec='seconds')}")
    print(f"Date cible    : {args.date.isoformat()}")

    issue_id = resolve_issue(args.date)
    print(f"Archive       : {issue_id}")

    code = run_ingestion(args.date, issue_id)
    if code != 0:
        raise RuntimeError(f"Échec de l'ingestion (code retour={code}).")

    print("\n✅ Ingestion terminée avec succès.")
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except Exception as e:
        print("\n❌ ERREUR dans le pipeline :", e)
        sys.exit(1)
