"""Fixtures partagées : composants chargés depuis les fichiers de données livrés."""
import pytest

from puretranslate.canned import CannedContentCatalog
from puretranslate.cleaner import ContentCleaner
from puretranslate.config import DATA_DIR
from puretranslate.feedback import FeedbackLoop
from puretranslate.gateway import TranslationGateway
from puretranslate.generator import GenerationCache
from puretranslate.monitor import QualityMonitor
from puretranslate.patterns import PatternLibrary
from puretranslate.recovery import ErrorRecoveryCoordinator
from puretranslate.regression import RegressionPreventionValidator
from puretranslate.terminology import TerminologyDictionary
from puretranslate.validator import PurityValidator


@pytest.fixture
def library():
    return PatternLibrary.from_file(DATA_DIR / "patterns.json")


@pytest.fixture
def terminology():
    return TerminologyDictionary.from_file(DATA_DIR / "terminology.json")


@pytest.fixture
def validator(terminology):
    return PurityValidator(terminology)


@pytest.fixture
def catalog(validator):
    return CannedContentCatalog.from_file(DATA_DIR / "canned.json", validator=validator)


@pytest.fixture
def monitor():
    return QualityMonitor(window_seconds=3600, alert_threshold=0.2, min_samples=1)


@pytest.fixture
def cleaner(library, monitor):
    return ContentCleaner(library, observer=monitor)


@pytest.fixture
def coordinator(cleaner, validator, catalog):
    return ErrorRecoveryCoordinator(
        cleaner,
        validator,
        catalog,
        cache=GenerationCache(16),
        degrade_tolerant={"targeted-recleaning", "canned-fallback"},
    )


@pytest.fixture
def gateway(library, cleaner, validator, coordinator, monitor):
    return TranslationGateway(library, cleaner, validator, coordinator, monitor)


@pytest.fixture
def regression(library, validator, catalog, monitor):
    cases = RegressionPreventionValidator.load_cases(DATA_DIR / "regression_cases.json")
    return RegressionPreventionValidator(cases, ContentCleaner(library), validator, catalog, monitor=monitor)


@pytest.fixture
def feedback(library, regression, cleaner, validator, monitor):
    return FeedbackLoop(library, regression, cleaner, validator, monitor)
