# src/marches_ted/collectors/issue_resolver.py

from __future__ import annotations

import logging
import random
import time
from datetime import date
from typing import Callable, Iterator, Optional, Tuple

from marches_ted.collectors.ted_client import TedClient
from marches_ted.errors import IssueNotFoundError

logger = logging.getLogger(__name__)

# Fenêtre de production ; l'outil d'upload des XML bruts sonde plus large
DEFAULT_WINDOW: Tuple[int, int] = (1, 400)
WIDE_WINDOW: Tuple[int, int] = (1, 600)


def date_needle(target_date: date) -> str:
    """2025-10-10 -> '20251010_' (préfixe du nom de fichier de l'archive)."""
    return f"{target_date.strftime('%Y%m%d')}_"


class IssueResolver:
    """
    Retrouve l'identifiant de l'archive quotidienne d'une date donnée.

    Les identifiants d'une année forment une suite dense <année>00001,
    <année>00002, ... On sonde chaque candidat par un HEAD et on retient
    le premier dont le nom de fichier annoncé contient la date cible.

    La correspondance repose sur le nom de fichier annoncé par le serveur :
    c'est une heuristique, pas une garantie.
    """

    def __init__(
        self,
        client: TedClient,
        window: Tuple[int, int] = DEFAULT_WINDOW,
        delay: float = 0.03,
        jitter: float = 0.02,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        start, end = window
        if start < 1 or start > end:
            raise ValueError(f"Fenêtre de sondage invalide: {window}")
        self.client = client
        self.window = (start, end)
        self.delay = delay
        self.jitter = jitter
        self.sleep = sleep

    @classmethod
    def from_client(cls, client: TedClient, window: Optional[Tuple[int, int]] = None) -> "IssueResolver":
        config = client.config
        return cls(
            client,
            window=window or config.issue_window,
            delay=config.probe_delay,
            jitter=config.probe_jitter,
            sleep=client.sleep,
        )

    def candidate_ids(self, year: int) -> Iterator[str]:
        start, end = self.window
        for n in range(start, end + 1):
            yield f"{year}{n:05d}"

    def _pause(self) -> None:
        self.sleep(self.delay + random.uniform(0, self.jitter))

    def resolve(self, target_date: date) -> str:
        """
        Renvoie l'identifiant de l'archive du `target_date`.
        Lève IssueNotFoundError si la fenêtre est épuisée sans correspondance.
        """
        needle = date_needle(target_date)
        logger.info(
            "Recherche de l'archive du %s (fenêtre %d-%d)...",
            target_date.isoformat(),
            *self.window,
        )

        for candidate in self.candidate_ids(target_date.year):
            resp = self.client.head_package(candidate)
            if resp is not None:
                disposition = resp.headers.get("Content-Disposition") or ""
                logger.debug("Candidat %s: %s", candidate, disposition)
                if needle in disposition:
                    logger.info("Archive trouvée pour le %s: %s", target_date.isoformat(), candidate)
                    return candidate
            self._pause()

        start, end = self.window
        raise IssueNotFoundError(
            target_date.isoformat(),
            int(f"{target_date.year}{start:05d}"),
            int(f"{target_date.year}{end:05d}"),
        )
