"""Coordinateur de récupération : liste ordonnée et finie de stratégies."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple

from puretranslate.canned import CannedContentCatalog
from puretranslate.cleaner import ContentCleaner
from puretranslate.config import settings
from puretranslate.errors import MalformedRuleError, TransportFailure
from puretranslate.generator import STRICT_METHOD, GenerateFn, GenerationCache, build_prompt
from puretranslate.models import (
    CleaningReport,
    FailureKind,
    PurityScore,
    RecoveryAttempt,
    TranslationOutcome,
    TranslationRequest,
    Verdict,
)
from puretranslate.patterns import RuleSet
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)

METHOD_SWITCHING = "method-switching"
TARGETED_RECLEANING = "targeted-recleaning"
CANNED_FALLBACK = "canned-fallback"
EMERGENCY_CONTENT = "emergency-content"

STRATEGY_ORDER = (METHOD_SWITCHING, TARGETED_RECLEANING, CANNED_FALLBACK, EMERGENCY_CONTENT)


@dataclass
class FailureContext:
    """Ce que la passe initiale transmet au coordinateur."""
    kind: FailureKind
    rule_set: RuleSet
    error: Optional[str] = None
    candidate_text: Optional[str] = None
    cleaning_report: Optional[CleaningReport] = None
    purity_score: Optional[PurityScore] = None


@dataclass
class _Candidate:
    text: str
    score: PurityScore


@dataclass
class _RecoveryState:
    request: TranslationRequest
    failure: FailureContext
    generate: GenerateFn
    candidates: List[_Candidate] = field(default_factory=list)
    reports: List[CleaningReport] = field(default_factory=list)

    def best_candidate(self) -> Optional[_Candidate]:
        if not self.candidates:
            return None
        return max(self.candidates, key=lambda c: c.score.target_script_ratio)


class ErrorRecoveryCoordinator:
    """Essaie les stratégies dans un ordre fixe jusqu'au premier résultat acceptable.

    Ordre : changement de méthode, re-nettoyage ciblé, repli pré-validé,
    contenu d'urgence. Une stratégie n'accepte DEGRADED que si elle figure
    dans ``degrade_tolerant``. Le contenu d'urgence est toujours renvoyé en
    dernier recours et marqué pour revue prioritaire.
    """

    def __init__(
        self,
        cleaner: ContentCleaner,
        validator: PurityValidator,
        catalog: CannedContentCatalog,
        cache: Optional[GenerationCache] = None,
        degrade_tolerant: Optional[Set[str]] = None,
    ):
        self.cleaner = cleaner
        self.validator = validator
        self.catalog = catalog
        self.cache = cache or GenerationCache()
        self.degrade_tolerant = (
            settings.DEGRADE_TOLERANT_STRATEGIES if degrade_tolerant is None else degrade_tolerant
        )

    async def recover(
        self,
        request: TranslationRequest,
        failure: FailureContext,
        generate: GenerateFn,
    ) -> TranslationOutcome:
        logger.info(
            "Recovering request %s after %s failure: %s", request.id, failure.kind.value, failure.error
        )
        state = _RecoveryState(request=request, failure=failure, generate=generate)
        if failure.candidate_text and failure.purity_score is not None:
            state.candidates.append(_Candidate(failure.candidate_text, failure.purity_score))

        path: List[RecoveryAttempt] = []
        steps = (
            (METHOD_SWITCHING, self._method_switching),
            (TARGETED_RECLEANING, self._targeted_recleaning),
            (CANNED_FALLBACK, self._canned_fallback),
        )

        for name, step in steps:
            if not self._applies(name, state):
                continue
            try:
                attempt, report = await step(state)
            except (TransportFailure, MalformedRuleError) as exc:
                logger.warning("Recovery strategy %s failed for %s: %s", name, request.id, exc)
                path.append(RecoveryAttempt(strategy_name=name, input=self._input_for(name, state), error=str(exc)))
                continue
            except Exception as exc:  # pragma: no cover - logging path
                logger.exception("Unexpected error in recovery strategy %s for %s", name, request.id)
                path.append(RecoveryAttempt(strategy_name=name, input=self._input_for(name, state), error=str(exc)))
                break

            attempt.succeeded = self._acceptable(name, attempt.purity_score)
            path.append(attempt)
            if attempt.succeeded:
                logger.info("Request %s recovered with %s", request.id, name)
                return TranslationOutcome(
                    request_id=request.id,
                    text=attempt.output or "",
                    purity_score=attempt.purity_score,
                    cleaning_report=report,
                    recovery_path=path,
                    strategy_used=name,
                    rule_set_version=failure.rule_set.version,
                )

        return self.emergency(request, failure.rule_set, failure.error or failure.kind.value, path)

    def emergency(
        self,
        request: TranslationRequest,
        rule_set: RuleSet,
        reason: str,
        path: Optional[List[RecoveryAttempt]] = None,
    ) -> TranslationOutcome:
        """Dernier recours : message non vide, uniquement dans l'écriture cible."""
        path = list(path or [])
        message = self.catalog.emergency_message(request.target_language)
        score = self.validator.validate(message, request.target_language, policy=rule_set.policy)
        score.verdict = Verdict.DEGRADED
        path.append(
            RecoveryAttempt(
                strategy_name=EMERGENCY_CONTENT,
                input=reason,
                output=message,
                purity_score=score,
                succeeded=True,
            )
        )
        logger.error("Request %s fell through to emergency content (%s)", request.id, reason)
        return TranslationOutcome(
            request_id=request.id,
            text=message,
            purity_score=score,
            cleaning_report=CleaningReport(),
            recovery_path=path,
            strategy_used=EMERGENCY_CONTENT,
            rule_set_version=rule_set.version,
            priority_review=True,
        )

    def _applies(self, name: str, state: _RecoveryState) -> bool:
        kind = state.failure.kind
        if kind == FailureKind.INTERNAL:
            return False
        if name == METHOD_SWITCHING:
            return kind in (FailureKind.TRANSPORT, FailureKind.PURITY)
        if name == TARGETED_RECLEANING:
            return kind != FailureKind.UNSALVAGEABLE and state.best_candidate() is not None
        if name == CANNED_FALLBACK:
            return self.catalog.for_domain(state.request.domain_hint, state.request.target_language) is not None
        return False

    def _acceptable(self, name: str, score: Optional[PurityScore]) -> bool:
        if score is None:
            return False
        if score.verdict == Verdict.PASS:
            return True
        return score.verdict == Verdict.DEGRADED and name in self.degrade_tolerant

    def _input_for(self, name: str, state: _RecoveryState) -> str:
        if name == TARGETED_RECLEANING:
            best = state.best_candidate()
            return best.text if best else ""
        if name == CANNED_FALLBACK:
            return state.request.domain_hint or ""
        return state.request.source_text

    def _score(self, text: str, state: _RecoveryState) -> PurityScore:
        request = state.request
        return self.validator.validate(
            text,
            request.target_language,
            source_language=request.source_language,
            source_text=request.source_text,
            policy=state.failure.rule_set.policy,
        )

    async def _method_switching(self, state: _RecoveryState) -> Tuple[RecoveryAttempt, CleaningReport]:
        request = state.request
        prompt = build_prompt(STRICT_METHOD, request.source_language, request.target_language, request.domain_hint)
        key = self.cache.key(prompt, request.source_text)
        raw = await self.cache.shielded_generate(key, state.generate, prompt, request.source_text)

        cleaned, report = self.cleaner.clean(raw, request.target_language, state.failure.rule_set)
        if report.flagged_reject:
            score = PurityScore(other_ratio=1.0, verdict=Verdict.REJECT)
        else:
            score = self._score(cleaned, state)
            state.candidates.append(_Candidate(cleaned, score))

        attempt = RecoveryAttempt(
            strategy_name=METHOD_SWITCHING,
            input=request.source_text,
            output=cleaned,
            purity_score=score,
        )
        return attempt, report

    async def _targeted_recleaning(self, state: _RecoveryState) -> Tuple[RecoveryAttempt, CleaningReport]:
        best = state.best_candidate()
        cleaned, report = self.cleaner.clean(
            best.text, state.request.target_language, state.failure.rule_set, aggressive=True
        )
        score = self._score(cleaned, state) if not report.flagged_reject else PurityScore(
            other_ratio=1.0, verdict=Verdict.REJECT
        )
        attempt = RecoveryAttempt(
            strategy_name=TARGETED_RECLEANING,
            input=best.text,
            output=cleaned,
            purity_score=score,
        )
        return attempt, report

    async def _canned_fallback(self, state: _RecoveryState) -> Tuple[RecoveryAttempt, CleaningReport]:
        request = state.request
        text = self.catalog.for_domain(request.domain_hint, request.target_language)
        score = self.validator.validate(text, request.target_language, policy=state.failure.rule_set.policy)
        if score.verdict == Verdict.PASS:
            # Fidélité littérale sacrifiée : jamais présenté comme un PASS
            score.verdict = Verdict.DEGRADED
        attempt = RecoveryAttempt(
            strategy_name=CANNED_FALLBACK,
            input=request.domain_hint or "",
            output=text,
            purity_score=score,
        )
        return attempt, CleaningReport()
