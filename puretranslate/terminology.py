"""Dictionnaire des termes juridiques et leur rendu canonique."""
from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Dict, List, Tuple

from pydantic import BaseModel, Field

from puretranslate.script_detector import script_for_language

logger = logging.getLogger(__name__)


class TermEntry(BaseModel):
    """Terme de l'art et son rendu canonique dans la langue cible."""
    source_language: str = Field(..., pattern="^(fr|en|ar)$")
    target_language: str = Field(..., pattern="^(fr|en|ar)$")
    source_term: str = Field(..., min_length=1)
    canonical: str = Field(..., min_length=1)


class TerminologyDictionary:
    """Recherche terme à terme, sans heuristique statistique."""

    def __init__(self, entries: List[TermEntry]):
        self._entries: Dict[Tuple[str, str], List[TermEntry]] = {}
        for entry in entries:
            self._entries.setdefault((entry.source_language, entry.target_language), []).append(entry)

    @classmethod
    def from_file(cls, path: Path) -> "TerminologyDictionary":
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        entries = [TermEntry.model_validate(raw) for raw in data.get("entries", [])]
        logger.info("Loaded %s terminology entries from %s", len(entries), path)
        return cls(entries)

    def entries_for(self, source_language: str, target_language: str) -> List[TermEntry]:
        return list(self._entries.get((source_language, target_language), []))

    def mismatches(
        self,
        source_text: str,
        source_language: str,
        translated_text: str,
        target_language: str,
    ) -> List[str]:
        """Termes détectés dans la source dont le rendu canonique manque dans la traduction."""
        missing: List[str] = []
        for entry in self.entries_for(source_language, target_language):
            if not _contains(source_text, entry.source_term, source_language):
                continue
            if not _contains(translated_text, entry.canonical, target_language, whole_word=False):
                missing.append(f"{entry.source_term} -> {entry.canonical}")
        return missing


def _contains(text: str, term: str, language: str, whole_word: bool = True) -> bool:
    if script_for_language(language) == "latin":
        if whole_word:
            return re.search(rf"(?<!\w){re.escape(term)}(?!\w)", text, re.IGNORECASE) is not None
        return term.casefold() in text.casefold()
    # Les préfixes arabes (ال، و، ب...) sont collés au mot : recherche par sous-chaîne
    return term in text
