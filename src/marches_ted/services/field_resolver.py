# src/marches_ted/services/field_resolver.py

from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

PathStep = Union[str, int]
FieldPath = Tuple[PathStep, ...]

# Clés porteuses de texte, dans l'ordre de priorité
TEXT_KEYS = ("#text", "content", "_")


def normalize_text(node: Any) -> Optional[str]:
    """
    Ramène un noeud quelconque à une chaîne non vide, ou None.

    - str       -> nettoyée (vide -> None)
    - nombre    -> str(nombre)
    - liste     -> premier membre qui se normalise en valeur non nulle
    - dict      -> "#text", puis "content", puis "_",
                   sinon l'unique membre s'il est une chaîne
    """
    if node is None:
        return None

    if isinstance(node, str):
        return node.strip() or None

    if isinstance(node, (int, float)):
        return str(node)

    if isinstance(node, (list, tuple)):
        for item in node:
            value = normalize_text(item)
            if value:
                return value
        return None

    if isinstance(node, dict):
        for key in TEXT_KEYS:
            if key in node:
                return normalize_text(node[key])
        if len(node) == 1:
            (only,) = node.values()
            if isinstance(only, str):
                return normalize_text(only)

    return None


def dig(node: Any, path: Sequence[PathStep]) -> Any:
    """
    Descend dans l'arbre en suivant `path`.

    Une étape texte sur une liste prend d'abord le premier élément ;
    une étape entière sur une liste l'indexe. Renvoie None si le chemin
    n'existe pas.
    """
    cur = node
    for step in path:
        if cur is None:
            return None

        if isinstance(step, int):
            if isinstance(cur, (list, tuple)):
                cur = cur[step] if -len(cur) <= step < len(cur) else None
            # un entier sur un objet unique : on reste sur l'objet
            continue

        if isinstance(cur, (list, tuple)):
            cur = cur[0] if cur else None
        if isinstance(cur, dict):
            cur = cur.get(step)
        else:
            return None

    return cur


def as_list(node: Any) -> list:
    """Un noeud absent -> [], un noeud unique -> [noeud], une liste -> elle-même."""
    if node is None:
        return []
    if isinstance(node, list):
        return node
    return [node]


def first_non_empty(*values: Any) -> Optional[str]:
    for value in values:
        text = normalize_text(value)
        if text:
            return text
    return None


def resolve_first(tree: Any, *paths: Sequence[PathStep]) -> Optional[str]:
    """
    Renvoie la première valeur non vide parmi les chemins candidats,
    dans l'ordre, ou None si aucun ne donne de texte.
    """
    for path in paths:
        text = normalize_text(dig(tree, path))
        if text:
            return text
    return None
