"""Validation de la pureté d'écriture d'un texte."""
from __future__ import annotations

import logging
from typing import Optional

from puretranslate.models import PurityScore, Verdict
from puretranslate.patterns import PurityPolicy
from puretranslate.script_detector import (
    OTHER,
    foreign_spans,
    script_counts,
    script_for_language,
)
from puretranslate.terminology import TerminologyDictionary

logger = logging.getLogger(__name__)


class PurityValidator:
    """Calcule la composition d'écriture et classe PASS / DEGRADED / REJECT.

    Les chiffres, la ponctuation, les symboles et les espaces sont exclus du
    dénominateur. Un texte vide (ou sans aucune lettre) est toujours REJECT.
    """

    def __init__(
        self,
        terminology: Optional[TerminologyDictionary] = None,
        policy: Optional[PurityPolicy] = None,
    ):
        self.terminology = terminology
        self.policy = policy or PurityPolicy()

    def validate(
        self,
        text: str,
        target_language: str,
        source_language: Optional[str] = None,
        source_text: Optional[str] = None,
        policy: Optional[PurityPolicy] = None,
    ) -> PurityScore:
        policy = policy or self.policy
        target_script = script_for_language(target_language)
        source_script = script_for_language(source_language) if source_language else None

        counts = script_counts(text or "")
        total = sum(counts.values())
        if total == 0:
            return PurityScore(other_ratio=1.0, verdict=Verdict.REJECT)

        target = counts.get(target_script, 0)
        source = counts.get(source_script, 0) if source_script and source_script != target_script else 0
        other = counts.get(OTHER, 0)
        foreign = total - target - source - other

        score = PurityScore(
            target_script_ratio=target / total,
            source_script_ratio=source / total,
            foreign_script_ratio=foreign / total,
            other_ratio=other / total,
            contamination_spans=foreign_spans(text, target_script),
        )
        score.verdict = self._classify(score, policy)

        if score.verdict == Verdict.PASS and self.terminology and source_text and source_language:
            score.terminology_mismatches = self.terminology.mismatches(
                source_text, source_language, text, target_language
            )
            if score.terminology_mismatches:
                logger.info(
                    "Terminology mismatch demotes PASS to DEGRADED: %s", score.terminology_mismatches
                )
                score.verdict = Verdict.DEGRADED

        return score

    @staticmethod
    def _classify(score: PurityScore, policy: PurityPolicy) -> Verdict:
        if (
            score.target_script_ratio >= policy.pass_target_ratio
            and score.foreign_script_ratio <= policy.pass_max_foreign_ratio
        ):
            return Verdict.PASS
        if score.target_script_ratio >= policy.degraded_target_ratio:
            return Verdict.DEGRADED
        return Verdict.REJECT
