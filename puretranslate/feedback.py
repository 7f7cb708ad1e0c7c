"""Boucle d'amélioration alimentée par les signalements utilisateurs."""
from __future__ import annotations

import difflib
import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from puretranslate.cleaner import ContentCleaner
from puretranslate.errors import ConfigurationConflict, InvalidTransition, UnknownReport
from puretranslate.events import events
from puretranslate.models import (
    CleaningRule,
    FeedbackReport,
    FeedbackStatus,
    Provenance,
    RegressionCase,
    RuleAction,
    Verdict,
)
from puretranslate.monitor import QualityMonitor
from puretranslate.patterns import PatternLibrary, RuleSet
from puretranslate.regression import RegressionPreventionValidator
from puretranslate.script_detector import classify_char, foreign_spans, keep_script, script_for_language
from puretranslate.validator import PurityValidator

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[FeedbackStatus, frozenset] = {
    FeedbackStatus.NEW: frozenset({FeedbackStatus.INVESTIGATING}),
    FeedbackStatus.INVESTIGATING: frozenset({FeedbackStatus.FIX_PROPOSED, FeedbackStatus.REJECTED}),
    FeedbackStatus.FIX_PROPOSED: frozenset({FeedbackStatus.FIX_VALIDATED, FeedbackStatus.REJECTED}),
    FeedbackStatus.FIX_VALIDATED: frozenset({FeedbackStatus.FIX_DEPLOYED}),
    FeedbackStatus.FIX_DEPLOYED: frozenset(),
    FeedbackStatus.REJECTED: frozenset(),
}

FEEDBACK_RULE_PRIORITY = 15
MIN_SIGNATURE_LENGTH = 2

# Langue source supposée quand le signalement ne la précise pas
DEFAULT_SOURCE_LANGUAGE = {"ar": "fr", "fr": "ar", "en": "ar"}


def extract_signatures(reported_text: str, target_language: str, highlighted: Optional[str] = None) -> List[str]:
    """Fragments contaminés : différence entre le texte signalé et son rendu pur attendu.

    Le rendu attendu ne garde que l'écriture cible ; chaque segment
    supprimé par le diff devient une signature. Du passage surligné par
    l'utilisateur, seules les plages hors écriture cible sont retenues.
    """
    target_script = script_for_language(target_language)
    expected = keep_script(reported_text, target_script)
    matcher = difflib.SequenceMatcher(None, reported_text, expected, autojunk=False)

    fragments = [
        reported_text[i1:i2]
        for tag, i1, i2, _j1, _j2 in matcher.get_opcodes()
        if tag in ("replace", "delete")
    ]
    if highlighted and highlighted.strip() in reported_text:
        fragments.append(highlighted)

    signatures: List[str] = []
    for fragment in fragments:
        for piece in _foreign_pieces(fragment.strip(), target_script):
            if _is_signature(piece) and piece not in signatures:
                signatures.append(piece)
    return signatures


def held_highlight(reported_text: str, target_language: str, highlighted: Optional[str]) -> Optional[str]:
    """Passage surligné écrit dans l'écriture cible : jamais retiré sans validation manuelle."""
    if not highlighted:
        return None
    fragment = highlighted.strip()
    target_script = script_for_language(target_language)
    if "|" in fragment or fragment not in reported_text:
        return None
    if not any(classify_char(char) == target_script for char in fragment):
        return None
    return fragment


def _foreign_pieces(fragment: str, target_script: str) -> List[str]:
    # Un segment qui contient des lettres cibles est réduit à ses plages étrangères
    if any(classify_char(char) == target_script for char in fragment):
        return [fragment[start:end] for start, end in foreign_spans(fragment, target_script)]
    return [fragment]


def _is_signature(fragment: str) -> bool:
    letters = sum(1 for char in fragment if classify_char(char) is not None)
    return letters >= MIN_SIGNATURE_LENGTH and "|" not in fragment


class FeedbackLoop:
    """Machine à états des signalements.

    ``submit`` accuse réception de manière synchrone ; ``ingest`` traite le
    signalement ensuite : extraction des signatures, règle candidate,
    vérification sur le texte signalé puis passage par le verrou
    d'activation de la suite de non-régression. Un cas de non-régression
    construit à partir du signalement rejoint la suite au déploiement.
    """

    def __init__(
        self,
        library: PatternLibrary,
        regression: RegressionPreventionValidator,
        cleaner: ContentCleaner,
        validator: PurityValidator,
        monitor: Optional[QualityMonitor] = None,
    ):
        self.library = library
        self.regression = regression
        self.cleaner = cleaner
        self.validator = validator
        self.monitor = monitor
        self._reports: Dict[str, FeedbackReport] = {}
        self._candidates: Dict[str, CleaningRule] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        reported_text: str,
        reported_by_user_id: str,
        original_request_id: Optional[str] = None,
        note: Optional[str] = None,
        suspected_contamination: Optional[str] = None,
        target_language: Optional[str] = None,
        source_language: Optional[str] = None,
    ) -> FeedbackReport:
        """Enregistre un signalement ; lève ValidationError s'il est mal formé."""
        original = None
        if original_request_id and self.monitor is not None:
            original = self.monitor.get_request(original_request_id)

        if original is not None:
            target_language = target_language or original.target_language
            source_language = source_language or original.source_language

        report = FeedbackReport(
            reported_text=reported_text,
            reported_by_user_id=reported_by_user_id,
            original_request_id=original_request_id,
            note=note,
            suspected_contamination=suspected_contamination,
            target_language=target_language or "ar",
            source_language=source_language,
        )
        with self._lock:
            self._reports[report.id] = report
        logger.info("Feedback report %s received from %s", report.id, reported_by_user_id)
        self._emit(report, None)
        return report

    def get(self, report_id: str) -> FeedbackReport:
        try:
            return self._reports[report_id]
        except KeyError as exc:
            raise UnknownReport(report_id) from exc

    def reports(self) -> List[FeedbackReport]:
        return list(self._reports.values())

    def candidate_for(self, report_id: str) -> Optional[CleaningRule]:
        return self._candidates.get(report_id)

    def reject(self, report_id: str, reason: str) -> FeedbackReport:
        return self._transition(self.get(report_id), FeedbackStatus.REJECTED, reason)

    async def ingest(self, report_id: str) -> FeedbackReport:
        report = self._transition(self.get(report_id), FeedbackStatus.INVESTIGATING)
        rule_set = self.library.current

        signatures = self._reproducible(report, rule_set)
        held = held_highlight(report.reported_text, report.target_language, report.suspected_contamination)
        if not signatures and held is None:
            return self._transition(
                report,
                FeedbackStatus.REJECTED,
                f"No contamination reproducible with rule set v{rule_set.version}",
            )

        rule = self.build_candidate_rule(report, signatures + ([held] if held is not None else []))
        self._candidates[report.id] = rule
        report = self._transition(
            report,
            FeedbackStatus.FIX_PROPOSED,
            f"Candidate rule {rule.id} for {len(signatures)} signature(s)",
            linked_rule_id=rule.id,
        )
        if held is not None:
            logger.warning("Report %s highlights target-script text %r, waiting for approval", report.id, held)
            return self._update(
                report,
                resolution_note=f"Highlighted text '{held}' is in the target script; manual approval required",
            )
        return await self._deploy(report, rule)

    async def approve(self, report_id: str) -> FeedbackReport:
        """Validation manuelle d'une règle candidate : passe quand même par la suite."""
        report = self.get(report_id)
        rule = self._candidates.get(report_id)
        if report.status not in (FeedbackStatus.FIX_PROPOSED, FeedbackStatus.FIX_VALIDATED) or rule is None:
            raise InvalidTransition(f"Report {report.id}: no candidate rule to approve in {report.status.value}")
        logger.info("Candidate rule %s approved for report %s", rule.id, report.id)
        return await self._deploy(report, rule)

    async def _deploy(self, report: FeedbackReport, rule: CleaningRule) -> FeedbackReport:
        candidate = self.library.current.with_rules([rule])
        resolved_verdict = self._resolved_verdict(report, candidate)
        if resolved_verdict == Verdict.REJECT:
            logger.warning("Candidate rule %s does not resolve report %s", rule.id, report.id)
            return self._update(report, resolution_note=f"Candidate rule {rule.id} does not resolve the report")

        case = self.build_regression_case(report, resolved_verdict)
        try:
            await self.regression.activate(
                self.library,
                extra_rules=[rule],
                new_cases=[case],
                on_validated=lambda _result: self._mark_validated(report.id),
            )
        except ConfigurationConflict as exc:
            logger.warning("Candidate rule %s blocked for report %s: %s", rule.id, report.id, exc)
            return self._update(self.get(report.id), resolution_note=str(exc))
        except OSError as exc:
            logger.error("Persisting rule %s for report %s failed: %s", rule.id, report.id, exc)
            if self.library.current.get(rule.id) is None:
                return self._update(
                    self.get(report.id), resolution_note=f"Deployment of rule {rule.id} failed: {exc}"
                )
            return self._transition(
                self.get(report.id),
                FeedbackStatus.FIX_DEPLOYED,
                f"Rule {rule.id} deployed but its regression case was not saved: {exc}",
            )

        return self._transition(
            self.get(report.id),
            FeedbackStatus.FIX_DEPLOYED,
            f"Rule {rule.id} deployed in rule set v{self.library.current.version}",
        )

    def _mark_validated(self, report_id: str) -> None:
        report = self.get(report_id)
        if report.status != FeedbackStatus.FIX_VALIDATED:
            self._transition(report, FeedbackStatus.FIX_VALIDATED, "Regression suite passed")

    def _reproducible(self, report: FeedbackReport, rule_set: RuleSet) -> List[str]:
        """Signatures que l'ensemble de règles actif laisse encore passer."""
        signatures = extract_signatures(report.reported_text, report.target_language, report.suspected_contamination)
        if not signatures:
            return []
        cleaned, _ = self.cleaner.clean(report.reported_text, report.target_language, rule_set)
        return [signature for signature in signatures if signature in cleaned]

    def _resolved_verdict(self, report: FeedbackReport, candidate: RuleSet) -> Verdict:
        cleaned, cleaning_report = self.cleaner.clean(report.reported_text, report.target_language, candidate)
        if cleaning_report.flagged_reject:
            return Verdict.REJECT
        return self.validator.validate(cleaned, report.target_language, policy=candidate.policy).verdict

    def build_candidate_rule(self, report: FeedbackReport, signatures: List[str]) -> CleaningRule:
        return CleaningRule(
            id=f"feedback-{report.id[:8]}",
            pattern="|".join(signatures),
            action=RuleAction.STRIP,
            priority=FEEDBACK_RULE_PRIORITY,
            target_language_scope=(report.target_language,),
            provenance=Provenance.USER_FEEDBACK,
            literal=True,
            description=f"From feedback report {report.id}",
        )

    def build_regression_case(self, report: FeedbackReport, resolved_verdict: Verdict) -> RegressionCase:
        source_language = report.source_language or DEFAULT_SOURCE_LANGUAGE[report.target_language]
        original = None
        if report.original_request_id and self.monitor is not None:
            original = self.monitor.get_request(report.original_request_id)

        policy = self.library.current.policy
        minimum = policy.pass_target_ratio if resolved_verdict == Verdict.PASS else policy.degraded_target_ratio
        return RegressionCase(
            id=f"feedback_{report.id[:8]}",
            input_text=report.reported_text,
            source_text=original.source_text if original is not None else None,
            source_language=source_language,
            target_language=report.target_language,
            minimum_acceptable_purity=minimum,
            source_incident_id=report.id,
        )

    def _transition(
        self,
        report: FeedbackReport,
        status: FeedbackStatus,
        note: Optional[str] = None,
        linked_rule_id: Optional[str] = None,
    ) -> FeedbackReport:
        if status not in TRANSITIONS[report.status]:
            raise InvalidTransition(f"Report {report.id}: {report.status.value} -> {status.value}")

        previous = report.status
        update = {"status": status}
        if note is not None:
            update["resolution_note"] = note
        if linked_rule_id is not None:
            update["linked_rule_id"] = linked_rule_id
        updated = self._update(report, **update)
        logger.info("Feedback report %s: %s -> %s", report.id, previous.value, status.value)
        self._emit(updated, previous)
        return updated

    def _update(self, report: FeedbackReport, **update) -> FeedbackReport:
        update["updated_at"] = datetime.now(timezone.utc)
        updated = report.model_copy(update=update)
        with self._lock:
            self._reports[report.id] = updated
        return updated

    def _emit(self, report: FeedbackReport, previous: Optional[FeedbackStatus]) -> None:
        events.log(
            "INFO",
            "feedback_transition",
            report_id=report.id,
            previous_status=previous.value if previous else None,
            status=report.status.value,
            linked_rule_id=report.linked_rule_id,
            original_request_id=report.original_request_id,
            resolution_note=report.resolution_note,
        )

