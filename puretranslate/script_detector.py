"""Classification des caractères par système d'écriture."""
from __future__ import annotations

import unicodedata
from typing import Dict, List, Optional, Tuple

from puretranslate.config import settings

SCRIPT_RANGES: Dict[str, Tuple[Tuple[int, int], ...]] = {
    "arabic": (
        (0x0600, 0x06FF),
        (0x0750, 0x077F),
        (0x08A0, 0x08FF),
        (0xFB50, 0xFDFF),
        (0xFE70, 0xFEFF),
    ),
    "latin": (
        (0x0041, 0x005A),
        (0x0061, 0x007A),
        (0x00C0, 0x024F),
        (0x1E00, 0x1EFF),
    ),
    "cyrillic": (
        (0x0400, 0x052F),
        (0x2DE0, 0x2DFF),
        (0xA640, 0xA69F),
    ),
    "greek": (
        (0x0370, 0x03FF),
        (0x1F00, 0x1FFF),
    ),
    "hebrew": (
        (0x0590, 0x05FF),
    ),
    "cjk": (
        (0x3040, 0x30FF),
        (0x4E00, 0x9FFF),
        (0xAC00, 0xD7AF),
    ),
}

# Chiffres, ponctuation, symboles, séparateurs et contrôles
NEUTRAL_CATEGORIES = ("N", "P", "S", "Z", "C")

OTHER = "other"
UNKNOWN = "unknown"


def script_for_language(language: str) -> str:
    """Retourne l'écriture attendue pour une langue."""
    return settings.LANGUAGE_SCRIPTS[language]


def is_neutral(char: str) -> bool:
    """Indique si un caractère est exclu du dénominateur."""
    return unicodedata.category(char)[0] in NEUTRAL_CATEGORIES


def classify_char(char: str) -> Optional[str]:
    """Retourne le nom de l'écriture d'un caractère, ou None s'il est neutre.

    Les lettres hors des plages connues sont classées ``unknown`` (écriture
    tierce), les marques combinantes isolées ``other``.
    """
    if is_neutral(char):
        return None

    code = ord(char)
    for script, ranges in SCRIPT_RANGES.items():
        for start, end in ranges:
            if start <= code <= end:
                return script

    if unicodedata.category(char).startswith("M"):
        return OTHER
    return UNKNOWN


def script_counts(text: str) -> Dict[str, int]:
    """Compte les caractères non neutres par écriture."""
    counts: Dict[str, int] = {}
    for char in text:
        script = classify_char(char)
        if script is None:
            continue
        counts[script] = counts.get(script, 0) + 1
    return counts


def foreign_spans(text: str, allowed_script: str) -> List[Tuple[int, int]]:
    """Retourne les plages maximales de lettres hors de l'écriture autorisée."""
    spans: List[Tuple[int, int]] = []
    start: Optional[int] = None

    for index, char in enumerate(text):
        script = classify_char(char)
        contaminated = script is not None and script not in (allowed_script, OTHER)
        if contaminated and start is None:
            start = index
        elif not contaminated and start is not None:
            spans.append((start, index))
            start = None

    if start is not None:
        spans.append((start, len(text)))
    return spans


def keep_script(text: str, allowed_script: str) -> str:
    """Rendu attendu pur : conserve l'écriture autorisée et les caractères neutres."""
    kept = []
    for char in text:
        script = classify_char(char)
        if script is None or script in (allowed_script, OTHER):
            kept.append(char)
        else:
            kept.append(" ")
    return " ".join("".join(kept).split())
