"""Suite de non-régression et verrou d'activation des règles."""
from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence

from puretranslate.canned import CannedContentCatalog
from puretranslate.cleaner import ContentCleaner
from puretranslate.errors import ConfigurationConflict
from puretranslate.gateway import TranslationGateway
from puretranslate.generator import GenerationCache, ReplayGenerator
from puretranslate.models import (
    CleaningRule,
    RegressionCase,
    RegressionCaseResult,
    RegressionSuiteResult,
    TranslationRequest,
    Verdict,
)
from puretranslate.monitor import QualityMonitor
from puretranslate.patterns import PatternLibrary, RuleSet, write_json_atomic
from puretranslate.recovery import METHOD_SWITCHING, TARGETED_RECLEANING, ErrorRecoveryCoordinator
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)

# Un cas n'est réussi que si le texte vient de l'entrée rejouée, pas d'un repli
INPUT_DERIVED_STRATEGIES = frozenset({"primary", METHOD_SWITCHING, TARGETED_RECLEANING})


class RegressionPreventionValidator:
    """Rejoue chaque cas actif à travers le pipeline complet.

    Les cas sont permanents : on les ajoute, on les désactive avec une
    justification, on ne les supprime jamais. La sortie enregistrée du
    modèle est rejouée par un ``ReplayGenerator`` ; un cache de génération
    neuf est utilisé à chaque exécution pour ne jamais mélanger ces sorties
    avec celles des vraies requêtes.
    """

    def __init__(
        self,
        cases: Iterable[RegressionCase],
        cleaner: ContentCleaner,
        validator: PurityValidator,
        catalog: CannedContentCatalog,
        monitor: Optional[QualityMonitor] = None,
        path: Optional[Path] = None,
        persist: bool = False,
    ):
        self._cases: List[RegressionCase] = []
        for case in cases:
            self._append(case)
        self.cleaner = cleaner
        self.validator = validator
        self.catalog = catalog
        self.monitor = monitor
        self.path = path
        self.persist = persist

    @staticmethod
    def load_cases(path: Path) -> List[RegressionCase]:
        with open(path, encoding="utf-8") as handle:
            data = json.load(handle)
        cases = [RegressionCase.model_validate(raw) for raw in data.get("cases", [])]
        logger.info("Loaded %s regression cases from %s", len(cases), path)
        return cases

    @property
    def cases(self) -> List[RegressionCase]:
        return list(self._cases)

    def active_cases(self) -> List[RegressionCase]:
        return [case for case in self._cases if case.active]

    def get_case(self, case_id: str) -> Optional[RegressionCase]:
        for case in self._cases:
            if case.id == case_id:
                return case
        return None

    def add_case(self, case: RegressionCase) -> RegressionCase:
        self._append(case)
        logger.info("Added regression case %s (incident %s)", case.id, case.source_incident_id)
        self._save()
        return case

    def deactivate(self, case_id: str, justification: str) -> RegressionCase:
        """Désactive un cas ; il reste dans la suite avec sa justification."""
        if not justification or not justification.strip():
            raise ValueError("A justification is required to deactivate a regression case")
        case = self.get_case(case_id)
        if case is None:
            raise KeyError(case_id)

        updated = case.model_copy(update={"active": False, "deactivation_reason": justification.strip()})
        self._cases[self._cases.index(case)] = updated
        logger.warning("Regression case %s deactivated: %s", case_id, updated.deactivation_reason)
        self._save()
        return updated

    def _append(self, case: RegressionCase) -> None:
        if self.get_case(case.id) is not None:
            raise ValueError(f"Regression case {case.id} already exists")
        self._cases.append(case)

    def _save(self) -> None:
        if not self.persist or self.path is None:
            return
        write_json_atomic(self.path, {"cases": [case.model_dump(mode="json") for case in self._cases]})

    async def run_case(self, case: RegressionCase, gateway: TranslationGateway, rule_set: RuleSet) -> RegressionCaseResult:
        request = TranslationRequest(
            source_text=case.source_text or case.input_text,
            source_language=case.source_language,
            target_language=case.target_language,
        )
        outcome = await gateway.translate(request, ReplayGenerator(case.input_text), rule_set=rule_set)
        score = outcome.purity_score
        passed = (
            outcome.strategy_used in INPUT_DERIVED_STRATEGIES
            and score.verdict != Verdict.REJECT
            and score.target_script_ratio >= case.minimum_acceptable_purity
        )
        return RegressionCaseResult(
            case_id=case.id,
            passed=passed,
            target_script_ratio=score.target_script_ratio,
            verdict=score.verdict,
            strategy_used=outcome.strategy_used,
            text=outcome.text,
        )

    async def run_suite(
        self,
        rule_set: RuleSet,
        extra_cases: Sequence[RegressionCase] = (),
    ) -> RegressionSuiteResult:
        """Exécute tous les cas actifs (plus ``extra_cases``) contre ``rule_set``."""
        coordinator = ErrorRecoveryCoordinator(
            self.cleaner, self.validator, self.catalog, cache=GenerationCache()
        )
        gateway = TranslationGateway(
            PatternLibrary(rule_set), self.cleaner, self.validator, coordinator
        )

        result = RegressionSuiteResult(rule_set_version=rule_set.version)
        for case in self.active_cases() + [case for case in extra_cases if case.active]:
            case_result = await self.run_case(case, gateway, rule_set)
            if case_result.passed:
                result.passed.append(case_result)
            else:
                logger.warning(
                    "Regression case %s failed on rule set v%s: ratio=%.2f verdict=%s strategy=%s",
                    case.id,
                    rule_set.version,
                    case_result.target_script_ratio,
                    case_result.verdict.value,
                    case_result.strategy_used,
                )
                result.failed.append(case_result)

        logger.info(
            "Regression suite on rule set v%s: %s passed, %s failed",
            rule_set.version,
            len(result.passed),
            len(result.failed),
        )
        if self.monitor is not None:
            self.monitor.record_regression_run(result)
        return result

    async def activate(
        self,
        library: PatternLibrary,
        candidate: Optional[RuleSet] = None,
        extra_rules: Sequence[CleaningRule] = (),
        new_cases: Sequence[RegressionCase] = (),
        on_validated: Optional[Callable[[RegressionSuiteResult], None]] = None,
    ) -> RuleSet:
        """Publie un ensemble de règles seulement si toute la suite passe.

        Le candidat est construit sous ``activation_lock`` à partir de la
        version active, de sorte que deux correctifs ne publient jamais un
        état incohérent. Les ``new_cases`` font partie de la vérification et
        rejoignent la suite après publication.
        """
        async with library.activation_lock:
            base = candidate or library.current
            if extra_rules:
                base = base.with_rules(extra_rules)

            result = await self.run_suite(base, extra_cases=new_cases)
            if not result.ok:
                failed = [case.case_id for case in result.failed]
                logger.error("Rule set v%s blocked by regression cases: %s", base.version, failed)
                raise ConfigurationConflict(failed, base.version)

            if on_validated is not None:
                on_validated(result)

            published = library.publish(base)
            for case in new_cases:
                self.add_case(case)
            return published

    async def run_periodically(self, library: PatternLibrary, interval: int) -> None:
        """Exécute la suite à intervalle régulier contre la version active."""
        while True:
            await asyncio.sleep(interval)
            try:
                result = await self.run_suite(library.current)
            except Exception:
                logger.exception("Scheduled regression run failed")
                continue
            if not result.ok:
                logger.error(
                    "Active rule set v%s fails %s regression cases",
                    result.rule_set_version,
                    len(result.failed),
                )
