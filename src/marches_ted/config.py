# src/marches_ted/config.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; marches-ted-bot/1.0; "
    "+https://example.com/contact)"
)


def _clean_env(value: Optional[str]) -> str:
    """Nettoie une valeur d'environnement (espaces, guillemets)."""
    if not value:
        return ""
    return value.strip().strip('"').strip("'")


def _env_str(name: str, default: str) -> str:
    return _clean_env(os.getenv(name)) or default


def _env_int(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name))
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Variable {name} invalide (entier attendu): {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name))
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"Variable {name} invalide (nombre attendu): {raw!r}") from exc


@dataclass
class IngestConfig:
    """
    Configuration d'un run d'ingestion TED.

    Les valeurs par défaut correspondent à la production ;
    `from_env()` permet de les surcharger via .env / variables d'environnement.
    """

    database_url: str = "sqlite:///data/marches_ted.db"
    base_url: str = "https://ted.europa.eu"
    user_agent: str = DEFAULT_USER_AGENT
    source: str = "TED"

    # HTTP
    timeout: float = 60.0
    retries: int = 4
    backoff_base: float = 0.4
    backoff_max: float = 15.0

    # Résolution de l'archive du jour
    issue_window_start: int = 1
    issue_window_end: int = 400
    probe_delay: float = 0.03
    probe_jitter: float = 0.02

    # Plafond de paramètres par requête SQL
    max_bind_params: int = 2000

    @property
    def issue_window(self) -> tuple[int, int]:
        return self.issue_window_start, self.issue_window_end

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "IngestConfig":
        load_dotenv(dotenv_path)
        defaults = cls()
        config = cls(
            database_url=_env_str("DATABASE_URL", defaults.database_url),
            base_url=_env_str("TED_BASE_URL", defaults.base_url).rstrip("/"),
            user_agent=_env_str("TED_USER_AGENT", defaults.user_agent),
            source=_env_str("TED_SOURCE", defaults.source),
            timeout=_env_float("TED_HTTP_TIMEOUT", defaults.timeout),
            retries=_env_int("TED_HTTP_RETRIES", defaults.retries),
            backoff_base=_env_float("TED_BACKOFF_BASE", defaults.backoff_base),
            backoff_max=_env_float("TED_BACKOFF_MAX", defaults.backoff_max),
            issue_window_start=_env_int("TED_ISSUE_WINDOW_START", defaults.issue_window_start),
            issue_window_end=_env_int("TED_ISSUE_WINDOW_END", defaults.issue_window_end),
            probe_delay=_env_float("TED_PROBE_DELAY", defaults.probe_delay),
            probe_jitter=_env_float("TED_PROBE_JITTER", defaults.probe_jitter),
            max_bind_params=_env_int("TED_MAX_BIND_PARAMS", defaults.max_bind_params),
        )
        if config.issue_window_start > config.issue_window_end:
            raise ValueError(
                "Fenêtre de résolution invalide: "
                f"{config.issue_window_start} > {config.issue_window_end}"
            )
        return config
