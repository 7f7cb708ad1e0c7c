"""Exceptions du pipeline de pureté."""
from __future__ import annotations

from typing import List, Optional


class PurityPipelineError(Exception):
    """Erreur de base du pipeline."""


class TransportFailure(PurityPipelineError):
    """L'appel de génération externe a échoué ou expiré."""


class PurityFailure(PurityPipelineError):
    """Le texte nettoyé ne passe toujours pas la validation."""


class UnsalvageableInput(PurityPipelineError):
    """Une règle flagReject a déclaré le texte irrécupérable par nettoyage."""

    def __init__(self, rule_ids: List[str]):
        super().__init__(f"Input flagged as unsalvageable by {', '.join(rule_ids)}")
        self.rule_ids = rule_ids


class ConfigurationConflict(PurityPipelineError):
    """Un changement de règles fait régresser la suite de non-régression."""

    def __init__(self, failed_case_ids: List[str], rule_set_version: Optional[int] = None):
        super().__init__(
            f"Rule set {rule_set_version} fails regression cases: {', '.join(failed_case_ids)}"
        )
        self.failed_case_ids = failed_case_ids
        self.rule_set_version = rule_set_version


class MalformedRuleError(PurityPipelineError):
    """Règle de nettoyage invalide ou ensemble de règles qui ne converge pas."""


class InvalidTransition(PurityPipelineError):
    """Transition interdite dans le cycle de vie d'un signalement."""


class UnknownReport(PurityPipelineError):
    """Signalement introuvable."""
