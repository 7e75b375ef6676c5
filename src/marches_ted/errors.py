# src/marches_ted/errors.py

from __future__ import annotations


class IngestionError(RuntimeError):
    """Erreur fatale pour un run d'ingestion."""

    # bilan partiel (RunSummary), posé par le pipeline avant de relancer
    summary = None


class IssueNotFoundError(IngestionError):
    """Aucune archive quotidienne ne correspond à la date dans la fenêtre sondée."""

    def __init__(self, target_date: str, start: int, end: int):
        super().__init__(
            f"Aucune archive trouvée pour le {target_date} "
            f"(identifiants {start} à {end} sondés)"
        )
        self.target_date = target_date
        self.start = start
        self.end = end


class PackageFetchError(IngestionError):
    """Téléchargement ou décompression de l'archive impossible."""


class NoticeParseError(ValueError):
    """Le membre XML n'est pas un document bien formé."""
