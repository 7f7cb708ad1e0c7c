"""Point d'entrée du pipeline : génération, nettoyage, validation, récupération."""
from __future__ import annotations

import logging
import time
from typing import Optional

from puretranslate.cleaner import ContentCleaner
from puretranslate.errors import MalformedRuleError, PurityFailure, TransportFailure, UnsalvageableInput
from puretranslate.generator import PRIMARY_METHOD, GenerateFn, build_prompt
from puretranslate.models import FailureKind, TranslationOutcome, TranslationRequest, Verdict
from puretranslate.monitor import QualityMonitor
from puretranslate.patterns import PatternLibrary, RuleSet
from puretranslate.recovery import ErrorRecoveryCoordinator, FailureContext
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)


class TranslationGateway:
    """Orchestre une requête de bout en bout.

    Le texte renvoyé n'est jamais vide : toute défaillance passe par le
    coordinateur de récupération, qui se termine au pire par le contenu
    d'urgence. L'ensemble de règles est capturé une fois au début de la
    requête et utilisé jusqu'à la fin, même si une nouvelle version est
    publiée entre-temps.
    """

    def __init__(
        self,
        library: PatternLibrary,
        cleaner: ContentCleaner,
        validator: PurityValidator,
        coordinator: ErrorRecoveryCoordinator,
        monitor: Optional[QualityMonitor] = None,
    ):
        self.library = library
        self.cleaner = cleaner
        self.validator = validator
        self.coordinator = coordinator
        self.monitor = monitor

    async def translate(
        self,
        request: TranslationRequest,
        generate: GenerateFn,
        rule_set: Optional[RuleSet] = None,
    ) -> TranslationOutcome:
        start_time = time.time()
        rule_set = rule_set or self.library.current
        if self.monitor is not None:
            self.monitor.remember_request(request)

        try:
            outcome = await self._run(request, generate, rule_set)
        except Exception as exc:
            logger.exception("Unexpected error while translating request %s", request.id)
            outcome = self.coordinator.emergency(request, rule_set, f"internal error: {exc}")

        outcome.duration_ms = round((time.time() - start_time) * 1000, 2)
        if self.monitor is not None:
            self.monitor.record(outcome, request)
        return outcome

    async def _run(self, request: TranslationRequest, generate: GenerateFn, rule_set: RuleSet) -> TranslationOutcome:
        if not request.source_text.strip():
            failure = FailureContext(FailureKind.UNSALVAGEABLE, rule_set, error="Empty source text")
            return await self.coordinator.recover(request, failure, generate)

        try:
            prompt = build_prompt(PRIMARY_METHOD, request.source_language, request.target_language, request.domain_hint)
            raw = await generate(prompt, request.source_text)
        except TransportFailure as exc:
            logger.warning("Primary generation failed for %s: %s", request.id, exc)
            return await self.coordinator.recover(
                request, FailureContext(FailureKind.TRANSPORT, rule_set, error=str(exc)), generate
            )

        try:
            cleaned, report = self.cleaner.clean(raw, request.target_language, rule_set)
        except MalformedRuleError as exc:
            logger.error("Cleaning failed with rule set v%s: %s", rule_set.version, exc)
            return await self.coordinator.recover(
                request, FailureContext(FailureKind.INTERNAL, rule_set, error=str(exc)), generate
            )

        if report.flagged_reject:
            failure = FailureContext(
                FailureKind.UNSALVAGEABLE,
                rule_set,
                error=str(UnsalvageableInput(report.rejected_by)),
                cleaning_report=report,
            )
            return await self.coordinator.recover(request, failure, generate)

        score = self.validator.validate(
            cleaned,
            request.target_language,
            source_language=request.source_language,
            source_text=request.source_text,
            policy=rule_set.policy,
        )
        if score.verdict == Verdict.PASS:
            return TranslationOutcome(
                request_id=request.id,
                text=cleaned,
                purity_score=score,
                cleaning_report=report,
                strategy_used=PRIMARY_METHOD,
                rule_set_version=rule_set.version,
            )

        logger.info(
            "Primary output for %s is %s (target ratio %.2f)",
            request.id,
            score.verdict.value,
            score.target_script_ratio,
        )
        failure = FailureContext(
            FailureKind.PURITY,
            rule_set,
            error=str(PurityFailure(f"Primary output verdict {score.verdict.value}")),
            candidate_text=cleaned,
            cleaning_report=report,
            purity_score=score,
        )
        return await self.coordinator.recover(request, failure, generate)
