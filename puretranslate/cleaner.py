"""Nettoyage des contaminations à partir de la bibliothèque de règles."""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Protocol, Tuple

from puretranslate.config import settings
from puretranslate.errors import MalformedRuleError
from puretranslate.models import CleaningReport, CleaningRule, RuleAction
from puretranslate.patterns import PatternLibrary, RuleSet, rule_matcher
from puretranslate.script_detector import foreign_spans, script_for_language

logger = logging.getLogger(__name__)

_INLINE_SPACES = re.compile(r"[ \t\u00a0]+")
_BLANK_LINES = re.compile(r"\n{3,}")


class CleaningObserver(Protocol):
    def record_cleaning(self, target_language: str, report: CleaningReport) -> None:
        ...


def normalize_whitespace(text: str) -> str:
    """Réduit les espaces laissés par les suppressions."""
    lines = [_INLINE_SPACES.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def _overlaps(start: int, end: int, spans: List[Tuple[int, int]]) -> bool:
    return any(start < span_end and span_start < end for span_start, span_end in spans)


class _PassState:
    """Compteurs d'une passe de nettoyage."""

    def __init__(self) -> None:
        self.fired: List[str] = []
        self.characters_removed = 0
        self.substitutions = 0

    def mark(self, rule_id: str) -> None:
        if rule_id not in self.fired:
            self.fired.append(rule_id)


class ContentCleaner:
    """Applique les règles par priorité jusqu'à un point fixe.

    ``clean`` est idempotent : le texte renvoyé est un point fixe de
    l'ensemble de règles, donc un second appel renvoie le même texte et un
    rapport vide. Les règles ``flagReject`` ne modifient rien ; elles sont
    évaluées sur le texte final et rapportées dans ``rejected_by``.
    """

    def __init__(
        self,
        library: PatternLibrary,
        observer: Optional[CleaningObserver] = None,
        max_passes: Optional[int] = None,
    ):
        self.library = library
        self.observer = observer
        self.max_passes = max_passes or settings.MAX_CLEANING_PASSES

    def clean(
        self,
        text: str,
        target_language: str,
        rule_set: Optional[RuleSet] = None,
        aggressive: bool = False,
    ) -> Tuple[str, CleaningReport]:
        """Nettoie ``text`` pour la langue cible.

        Avec ``aggressive``, les règles marquées agressives sont ajoutées mais
        n'agissent que sur les plages contaminées détectées par le validateur.
        """
        rule_set = rule_set or self.library.current
        rules = rule_set.ordered_rules(target_language, aggressive=aggressive)
        target_script = script_for_language(target_language)

        report = CleaningReport()
        cleaned = normalize_whitespace(text or "")

        for pass_number in range(1, self.max_passes + 1):
            state = _PassState()
            for rule in rules:
                cleaned = self._apply_rule(rule, cleaned, target_script, state)
            cleaned = normalize_whitespace(cleaned)

            if not state.fired:
                break

            report.passes = pass_number
            report.characters_removed += state.characters_removed
            report.substitutions_made += state.substitutions
            for rule_id in state.fired:
                if rule_id not in report.rule_ids_applied:
                    report.rule_ids_applied.append(rule_id)
        else:
            raise MalformedRuleError(
                f"Rule set v{rule_set.version} did not converge after {self.max_passes} passes "
                f"(last rules fired: {', '.join(state.fired)})"
            )

        for rule in rules:
            if rule.action == RuleAction.FLAG_REJECT and rule_matcher(rule).search(cleaned):
                report.rejected_by.append(rule.id)

        logger.debug(
            "Cleaned text for %s with rule set v%s: rules=%s removed=%s substitutions=%s rejected=%s",
            target_language,
            rule_set.version,
            report.rule_ids_applied,
            report.characters_removed,
            report.substitutions_made,
            report.rejected_by,
        )
        if self.observer is not None:
            self.observer.record_cleaning(target_language, report)

        return cleaned, report

    def _apply_rule(
        self,
        rule: CleaningRule,
        text: str,
        target_script: str,
        state: _PassState,
    ) -> str:
        if rule.action == RuleAction.FLAG_REJECT:
            return text

        matcher = rule_matcher(rule)
        spans = foreign_spans(text, target_script) if rule.aggressive else None

        def _replace(match: "re.Match[str]") -> str:
            matched = match.group(0)
            if not matched:
                return matched
            if spans is not None and not _overlaps(match.start(), match.end(), spans):
                return matched

            if rule.action == RuleAction.STRIP:
                state.mark(rule.id)
                state.characters_removed += len(matched)
                return " "

            replacement = match.expand(rule.replacement or "")
            if replacement == matched:
                return matched
            state.mark(rule.id)
            state.substitutions += 1
            return replacement

        return matcher.sub(_replace, text)
