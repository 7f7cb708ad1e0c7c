"""Modèles Pydantic pour validation des données."""
from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LANGUAGE_PATTERN = "^(fr|en|ar)$"


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Verdict(str, Enum):
    """Classement de pureté d'un texte."""
    PASS = "PASS"
    DEGRADED = "DEGRADED"
    REJECT = "REJECT"


class RuleAction(str, Enum):
    """Action d'une règle de nettoyage."""
    STRIP = "strip"
    SUBSTITUTE = "substitute"
    FLAG_REJECT = "flagReject"


class Provenance(str, Enum):
    """Origine d'une règle."""
    BUILTIN = "builtin"
    USER_FEEDBACK = "user-feedback"


class FeedbackStatus(str, Enum):
    """États du cycle de vie d'un signalement."""
    NEW = "new"
    INVESTIGATING = "investigating"
    FIX_PROPOSED = "fix-proposed"
    FIX_VALIDATED = "fix-validated"
    FIX_DEPLOYED = "fix-deployed"
    REJECTED = "rejected"


class FailureKind(str, Enum):
    """Catégorie d'échec remise au coordinateur de récupération."""
    TRANSPORT = "transport"
    PURITY = "purity"
    UNSALVAGEABLE = "unsalvageable"
    INTERNAL = "internal"


class TranslationRequest(BaseModel):
    """Requête de traduction (immuable)."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    source_text: str = ""
    source_language: str = Field(..., pattern=LANGUAGE_PATTERN)
    target_language: str = Field(..., pattern=LANGUAGE_PATTERN)
    domain_hint: Optional[str] = None
    requested_at: datetime = Field(default_factory=_utcnow)

    @field_validator('target_language')
    @classmethod
    def check_languages_different(cls, v, info):
        """Vérifie que source et cible sont différentes."""
        if 'source_language' in info.data and v == info.data['source_language']:
            raise ValueError("Source and target languages must be different")
        return v


class CleaningRule(BaseModel):
    """Signature de contamination et action associée."""
    model_config = ConfigDict(frozen=True)

    id: str
    pattern: str
    action: RuleAction = RuleAction.STRIP
    priority: int = 100
    target_language_scope: Tuple[str, ...] = ("*",)
    enabled: bool = True
    provenance: Provenance = Provenance.BUILTIN
    added_at: datetime = Field(default_factory=_utcnow)
    replacement: Optional[str] = None
    aggressive: bool = False
    literal: bool = False
    case_sensitive: bool = True
    description: str = ""

    @field_validator('pattern')
    @classmethod
    def check_pattern(cls, v: str) -> str:
        if not v:
            raise ValueError("Rule pattern cannot be empty")
        return v

    @model_validator(mode="after")
    def check_rule(self) -> "CleaningRule":
        if self.action == RuleAction.SUBSTITUTE and self.replacement is None:
            raise ValueError(f"Substitute rule {self.id} needs a replacement")
        if not self.literal:
            try:
                re.compile(self.pattern)
            except re.error as exc:
                raise ValueError(f"Invalid pattern for rule {self.id}: {exc}") from exc
        return self

    def applies_to(self, language: str) -> bool:
        return "*" in self.target_language_scope or language in self.target_language_scope


class CleaningReport(BaseModel):
    """Trace de ce que le nettoyage a modifié."""
    rule_ids_applied: List[str] = Field(default_factory=list)
    characters_removed: int = 0
    substitutions_made: int = 0
    rejected_by: List[str] = Field(default_factory=list)
    passes: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.rule_ids_applied and self.characters_removed == 0 and self.substitutions_made == 0

    @property
    def flagged_reject(self) -> bool:
        return bool(self.rejected_by)


class PurityScore(BaseModel):
    """Composition d'écriture d'un texte et verdict."""
    target_script_ratio: float = 0.0
    source_script_ratio: float = 0.0
    foreign_script_ratio: float = 0.0
    other_ratio: float = 0.0
    verdict: Verdict = Verdict.REJECT
    contamination_spans: List[Tuple[int, int]] = Field(default_factory=list)
    terminology_mismatches: List[str] = Field(default_factory=list)


class RecoveryAttempt(BaseModel):
    """Entrée ordonnée du journal de récupération."""
    strategy_name: str
    input: str
    output: Optional[str] = None
    purity_score: Optional[PurityScore] = None
    succeeded: bool = False
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)


class TranslationOutcome(BaseModel):
    """Seul artefact renvoyé aux appelants."""
    request_id: str
    text: str
    purity_score: PurityScore
    cleaning_report: CleaningReport
    recovery_path: List[RecoveryAttempt] = Field(default_factory=list)
    strategy_used: str
    duration_ms: float = 0.0
    rule_set_version: int = 0
    priority_review: bool = False


class RegressionCase(BaseModel):
    """Entrée permanente de la suite de non-régression."""
    id: str = Field(default_factory=_new_id)
    input_text: str
    source_text: Optional[str] = None
    source_language: str = Field(..., pattern=LANGUAGE_PATTERN)
    target_language: str = Field(..., pattern=LANGUAGE_PATTERN)
    minimum_acceptable_purity: float = Field(0.95, ge=0.0, le=1.0)
    source_incident_id: Optional[str] = None
    active: bool = True
    deactivation_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator('target_language')
    @classmethod
    def check_languages_different(cls, v, info):
        if 'source_language' in info.data and v == info.data['source_language']:
            raise ValueError("Source and target languages must be different")
        return v


class RegressionCaseResult(BaseModel):
    """Résultat d'un cas de non-régression."""
    case_id: str
    passed: bool
    target_script_ratio: float
    verdict: Verdict
    strategy_used: str
    text: str


class RegressionSuiteResult(BaseModel):
    """Rapport d'exécution de la suite."""
    rule_set_version: int
    passed: List[RegressionCaseResult] = Field(default_factory=list)
    failed: List[RegressionCaseResult] = Field(default_factory=list)
    ran_at: datetime = Field(default_factory=_utcnow)

    @property
    def ok(self) -> bool:
        return not self.failed


class FeedbackReport(BaseModel):
    """Signalement utilisateur d'une sortie contaminée."""
    id: str = Field(default_factory=_new_id)
    reported_text: str = Field(..., min_length=1)
    reported_by_user_id: str = Field(..., min_length=1)
    original_request_id: Optional[str] = None
    target_language: str = Field("ar", pattern=LANGUAGE_PATTERN)
    source_language: Optional[str] = Field(None, pattern=LANGUAGE_PATTERN)
    suspected_contamination: Optional[str] = None
    note: Optional[str] = None
    status: FeedbackStatus = FeedbackStatus.NEW
    linked_rule_id: Optional[str] = None
    resolution_note: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator('reported_text')
    @classmethod
    def check_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Reported text cannot be empty")
        return v


class HealthResponse(BaseModel):
    """Réponse du healthcheck."""
    status: str
    ollama_available: bool
    ollama_url: str
    fallback_alert: bool
    rule_set_version: int
