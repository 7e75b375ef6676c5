# src/marches_ted/services/deadlines.py

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Optional, Tuple

logger = logging.getLogger(__name__)

# Date "sentinelle" portée par une heure seule
SENTINEL_DATE = "1970-01-01"

_OFFSET = r"(Z|[+-]\d{2}:\d{2})"
_BARE_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})" + _OFFSET + r"?$")
_BARE_TIME_RE = re.compile(r"^(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)" + _OFFSET + r"?$")
_FULL_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})T(\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)" + _OFFSET + r"?$")


# =========================
# Helpers
# =========================

def expand_timestamp(raw: Optional[str]) -> Optional[str]:
    """
    Ramène une valeur brute à une forme horodatée complète.

    - "2025-10-10+02:00"  -> "2025-10-10T00:00:00+02:00"
    - "14:30:00+02:00"    -> "1970-01-01T14:30:00+02:00"
    - valeur avec "T"     -> inchangée
    """
    if raw is None:
        return None
    value = raw.strip()
    if not value:
        return None
    if "T" in value:
        return value

    m = _BARE_DATE_RE.match(value)
    if m:
        return f"{m.group(1)}T00:00:00{m.group(2) or ''}"

    m = _BARE_TIME_RE.match(value)
    if m:
        return f"{SENTINEL_DATE}T{m.group(1)}{m.group(2) or ''}"

    return value


def _split(iso: str) -> Optional[Tuple[str, str, str]]:
    """(date, heure, décalage) d'une forme complète, ou None."""
    m = _FULL_RE.match(iso)
    if not m:
        return None
    return m.group(1), m.group(2), m.group(3) or ""


def _is_time_only(iso: Optional[str]) -> bool:
    return bool(iso) and iso.startswith(f"{SENTINEL_DATE}T")


def to_utc(iso: Optional[str]) -> Optional[datetime]:
    """
    Parse une chaîne ISO en conservant son décalage, puis convertit en UTC.
    Une valeur sans décalage est lue comme UTC. Échec -> None.
    """
    if not iso:
        return None
    cleaned = iso.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(cleaned)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        logger.debug("Horodatage illisible: %r", iso)
        return None


# =========================
# API
# =========================

def combine_deadline(raw_date: Optional[str], raw_time: Optional[str]) -> Optional[datetime]:
    """
    Combine une date et une heure limites (chacune éventuellement absente,
    chacune avec son propre décalage) en un instant UTC.

    Deux valeurs présentes qui ne forment pas un couple (date, heure du
    jour), par exemple deux horodatages complets, donnent None.

    None signifie "inconnue", pas "aucune date limite".
    """
    d_iso = expand_timestamp(raw_date)
    t_iso = expand_timestamp(raw_time)

    if not d_iso and not t_iso:
        return None

    iso: Optional[str] = None
    d_parts = _split(d_iso) if d_iso else None
    t_parts = _split(t_iso) if t_iso else None

    if d_parts and t_parts and not _is_time_only(d_iso) and _is_time_only(t_iso):
        # date réelle + heure de la journée ; décalage de la date en priorité
        offset = d_parts[2] or t_parts[2] or "Z"
        iso = f"{d_parts[0]}T{t_parts[1]}{offset}"
    elif d_iso and t_iso:
        # deux valeurs qui ne forment pas un couple date + heure du jour :
        # aucune n'est privilégiée, l'échéance reste inconnue
        logger.debug("Échéance ambiguë ignorée: date=%r heure=%r", raw_date, raw_time)
        return None
    elif d_iso:
        iso = d_iso
    else:
        iso = t_iso

    return to_utc(iso)


def parse_publication_date(raw: Optional[str]) -> Optional[datetime]:
    """Date de publication brute -> instant UTC (minuit au décalage indiqué)."""
    return to_utc(expand_timestamp(raw))


def fallback_published_at(target_date: date) -> datetime:
    """Minuit UTC de la date cible du run."""
    return datetime(target_date.year, target_date.month, target_date.day, tzinfo=timezone.utc)
