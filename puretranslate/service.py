"""Assemblage des composants du pipeline de pureté."""
from __future__ import annotations

import logging
from typing import Optional

from puretranslate.canned import CannedContentCatalog
from puretranslate.cleaner import ContentCleaner
from puretranslate.config import settings
from puretranslate.feedback import FeedbackLoop
from puretranslate.gateway import TranslationGateway
from puretranslate.generator import GenerateFn, GenerationCache
from puretranslate.models import RegressionSuiteResult, TranslationOutcome, TranslationRequest
from puretranslate.monitor import QualityMonitor
from puretranslate.patterns import PatternLibrary, RuleSet
from puretranslate.recovery import ErrorRecoveryCoordinator
from puretranslate.regression import RegressionPreventionValidator
from puretranslate.terminology import TerminologyDictionary
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)


class PurityService:
    """Façade utilisée par la couche HTTP : traduction, signalements, administration."""

    def __init__(
        self,
        library: PatternLibrary,
        catalog: CannedContentCatalog,
        regression: RegressionPreventionValidator,
        validator: PurityValidator,
        monitor: QualityMonitor,
    ):
        self.library = library
        self.catalog = catalog
        self.validator = validator
        self.monitor = monitor
        self.regression = regression

        self.cleaner = ContentCleaner(library, observer=monitor)
        self.coordinator = ErrorRecoveryCoordinator(
            self.cleaner, validator, catalog, cache=GenerationCache(settings.GENERATION_CACHE_SIZE)
        )
        self.gateway = TranslationGateway(library, self.cleaner, validator, self.coordinator, monitor)
        self.feedback = FeedbackLoop(library, regression, self.cleaner, validator, monitor)

    @classmethod
    def from_settings(cls, monitor: Optional[QualityMonitor] = None) -> "PurityService":
        """Charge la bibliothèque, le dictionnaire, le catalogue et la suite depuis les fichiers."""
        monitor = monitor or QualityMonitor()
        library = PatternLibrary.from_file(settings.PATTERN_LIBRARY_PATH, persist=settings.PATTERN_LIBRARY_PERSIST)
        terminology = TerminologyDictionary.from_file(settings.TERMINOLOGY_PATH)
        validator = PurityValidator(terminology, policy=library.current.policy)
        catalog = CannedContentCatalog.from_file(settings.CANNED_CONTENT_PATH, validator=validator)

        # La suite rejoue sans alimenter les statistiques de nettoyage
        regression = RegressionPreventionValidator(
            RegressionPreventionValidator.load_cases(settings.REGRESSION_CASES_PATH),
            ContentCleaner(library),
            validator,
            catalog,
            monitor=monitor,
            path=settings.REGRESSION_CASES_PATH,
            persist=settings.PATTERN_LIBRARY_PERSIST,
        )
        return cls(library, catalog, regression, validator, monitor)

    async def translate(
        self,
        source_text: str,
        source_language: str,
        target_language: str,
        generate: GenerateFn,
        domain_hint: Optional[str] = None,
    ) -> TranslationOutcome:
        """Traduit un texte ; lève ValidationError si les langues sont invalides."""
        request = TranslationRequest(
            source_text=source_text or "",
            source_language=source_language,
            target_language=target_language,
            domain_hint=domain_hint or None,
        )
        return await self.gateway.translate(request, generate)

    def report_contamination(
        self,
        reported_text: str,
        user_id: str,
        original_request_id: Optional[str] = None,
        note: Optional[str] = None,
        suspected_contamination: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> str:
        report = self.feedback.submit(
            reported_text,
            user_id,
            original_request_id=original_request_id,
            note=note,
            suspected_contamination=suspected_contamination,
            target_language=target_language,
        )
        return report.id

    async def run_regression(self) -> RegressionSuiteResult:
        return await self.regression.run_suite(self.library.current)

    async def reload_patterns(self) -> RuleSet:
        """Relit le fichier de règles et l'active si la suite passe."""
        candidate = self.library.read_file()
        return await self.regression.activate(self.library, candidate=candidate)
