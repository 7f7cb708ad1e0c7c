"""Contenus de repli pré-validés."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Optional

from puretranslate.errors import ConfigurationConflict
from puretranslate.models import Verdict
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)


class CannedContentCatalog:
    """Textes de repli par domaine et message d'urgence par langue.

    Chaque entrée est validée au chargement : un texte qui n'atteint pas
    PASS dans sa langue empêche le catalogue de se charger.
    """

    def __init__(self, domains: Dict[str, Dict[str, str]], emergency: Dict[str, str]):
        self.domains = domains
        self.emergency = emergency

    @classmethod
    def from_file(cls, path: Path, validator: Optional[PurityValidator] = None) -> "CannedContentCatalog":
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        catalog = cls(data.get("domains", {}), data.get("emergency", {}))
        if validator is not None:
            catalog.verify(validator)
        logger.info("Loaded %s canned domains from %s", len(catalog.domains), path)
        return catalog

    def verify(self, validator: PurityValidator) -> None:
        impure = []
        entries = [(f"{domain}/{lang}", lang, text) for domain, texts in self.domains.items() for lang, text in texts.items()]
        entries += [(f"emergency/{lang}", lang, text) for lang, text in self.emergency.items()]
        for name, language, text in entries:
            if validator.validate(text, language).verdict != Verdict.PASS:
                impure.append(name)
        if impure:
            raise ConfigurationConflict(impure)

    def for_domain(self, domain_hint: Optional[str], language: str) -> Optional[str]:
        if not domain_hint:
            return None
        return self.domains.get(domain_hint, {}).get(language)

    def emergency_message(self, language: str) -> str:
        return self.emergency.get(language) or self.emergency["en"]
