"""Bibliothèque de signatures de contamination, versionnée."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError

from puretranslate.errors import MalformedRuleError
from puretranslate.events import events
from puretranslate.models import CleaningRule

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str, literal: bool, case_sensitive: bool) -> "re.Pattern[str]":
    """Compile le motif d'une règle (liste de jetons séparés par ``|`` si littéral)."""
    flags = 0 if case_sensitive else re.IGNORECASE
    if literal:
        tokens = sorted((t for t in pattern.split("|") if t), key=len, reverse=True)
        pattern = "|".join(re.escape(token) for token in tokens)
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        raise MalformedRuleError(f"Cannot compile pattern {pattern!r}: {exc}") from exc


def rule_matcher(rule: CleaningRule) -> "re.Pattern[str]":
    return compile_pattern(rule.pattern, rule.literal, rule.case_sensitive)


@dataclass(frozen=True)
class PurityPolicy:
    """Seuils de pureté (données, pas code)."""
    pass_target_ratio: float = 0.95
    pass_max_foreign_ratio: float = 0.02
    degraded_target_ratio: float = 0.80

    def __post_init__(self) -> None:
        if not 0.0 <= self.degraded_target_ratio <= self.pass_target_ratio <= 1.0:
            raise MalformedRuleError("Thresholds must satisfy 0 <= degraded <= pass <= 1")
        if not 0.0 <= self.pass_max_foreign_ratio <= 1.0:
            raise MalformedRuleError("Foreign ratio threshold must be within [0, 1]")


@dataclass(frozen=True)
class RuleSet:
    """Instantané immuable de la bibliothèque, capturé par chaque requête."""
    version: int
    rules: Tuple[CleaningRule, ...]
    policy: PurityPolicy = field(default_factory=PurityPolicy)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def ordered_rules(self, language: str, aggressive: bool = False) -> List[CleaningRule]:
        """Règles actives pour une langue, triées par priorité puis identifiant."""
        selected = [
            rule
            for rule in self.rules
            if rule.enabled and rule.applies_to(language) and (aggressive or not rule.aggressive)
        ]
        return sorted(selected, key=lambda rule: (rule.priority, rule.id))

    def get(self, rule_id: str) -> Optional[CleaningRule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def with_rules(self, extra: Iterable[CleaningRule]) -> "RuleSet":
        """Candidat non publié contenant des règles supplémentaires (ou remplacées)."""
        extra = list(extra)
        replaced = {rule.id for rule in extra}
        rules = tuple(rule for rule in self.rules if rule.id not in replaced) + tuple(extra)
        return replace(self, version=self.version + 1, rules=rules, created_at=datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "thresholds": {
                "pass_target_ratio": self.policy.pass_target_ratio,
                "pass_max_foreign_ratio": self.policy.pass_max_foreign_ratio,
                "degraded_target_ratio": self.policy.degraded_target_ratio,
            },
            "rules": [rule.model_dump(mode="json") for rule in self.rules],
        }


def rule_set_from_dict(data: dict) -> RuleSet:
    """Construit un RuleSet à partir du format JSON de la bibliothèque."""
    try:
        rules = tuple(CleaningRule.model_validate(raw) for raw in data.get("rules", []))
    except ValidationError as exc:
        raise MalformedRuleError(f"Invalid cleaning rule: {exc}") from exc

    ids = [rule.id for rule in rules]
    duplicates = {rule_id for rule_id in ids if ids.count(rule_id) > 1}
    if duplicates:
        raise MalformedRuleError(f"Duplicate rule ids: {', '.join(sorted(duplicates))}")

    for rule in rules:
        rule_matcher(rule)

    policy = PurityPolicy(**data.get("thresholds", {}))
    return RuleSet(version=int(data.get("version", 1)), rules=rules, policy=policy)


def load_rule_set(path: Path) -> RuleSet:
    with open(path, encoding="utf-8") as handle:
        return rule_set_from_dict(json.load(handle))


class PatternLibrary:
    """Détient l'ensemble de règles actif et publie les nouvelles versions atomiquement.

    Les lecteurs récupèrent ``current`` une fois par requête et gardent cet
    instantané jusqu'à la fin. Les écritures passent par ``publish`` ; la
    validation préalable par la suite de non-régression se fait sous
    ``activation_lock``.
    """

    def __init__(self, rule_set: RuleSet, path: Optional[Path] = None, persist: bool = False):
        self._current = rule_set
        self._lock = threading.Lock()
        self.activation_lock = asyncio.Lock()
        self.path = path
        self.persist = persist

    @classmethod
    def from_file(cls, path: Path, persist: bool = False) -> "PatternLibrary":
        rule_set = load_rule_set(path)
        logger.info("Loaded pattern library v%s (%s rules) from %s", rule_set.version, len(rule_set.rules), path)
        return cls(rule_set, path=path, persist=persist)

    @property
    def current(self) -> RuleSet:
        return self._current

    def publish(self, candidate: RuleSet) -> RuleSet:
        """Remplace l'instantané actif ; la version est toujours strictement croissante.

        Le fichier est écrit avant le remplacement : si l'écriture échoue
        (OSError), la version active reste inchangée.
        """
        with self._lock:
            version = max(candidate.version, self._current.version + 1)
            published = replace(candidate, version=version)
            if self.persist and self.path is not None:
                self._save(published)
            self._current = published

        logger.info("Published pattern library v%s (%s rules)", published.version, len(published.rules))
        events.log(
            "INFO",
            "pattern_library_published",
            rule_set_version=published.version,
            rule_count=len(published.rules),
            rule_ids=[rule.id for rule in published.rules],
        )
        return published

    def read_file(self) -> RuleSet:
        """Relit le fichier de configuration sans l'activer."""
        if self.path is None:
            raise MalformedRuleError("Pattern library has no backing file")
        return load_rule_set(self.path)

    def _save(self, rule_set: RuleSet) -> None:
        write_json_atomic(self.path, rule_set.to_dict())


def write_json_atomic(path: Path, data: dict) -> None:
    """Écrit un fichier JSON via un fichier temporaire puis un renommage."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except OSError as exc:
        logger.error("Failed to write %s: %s", path, exc)
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
