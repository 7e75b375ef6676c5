# src/marches_ted/persistence/paths.py

from pathlib import Path

# Dossier racine du projet = dossier qui contient "data"
PROJECT_ROOT = Path(__file__).resolve().parents[3]
DATA_DIR = PROJECT_ROOT / "data"

RAW_DIR = DATA_DIR / "raw"


def issue_dir(issue_id: str, root: Path | None = None) -> Path:
    """
    Dossier des XML bruts d'une archive : data/raw/issue-<ID>/
    """
    return (root or RAW_DIR) / f"issue-{issue_id}"
