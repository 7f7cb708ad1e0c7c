"""Suivi de la qualité des traductions sur fenêtre glissante."""
from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from puretranslate.config import settings
from puretranslate.events import events
from puretranslate.models import (
    CleaningReport,
    RegressionSuiteResult,
    TranslationOutcome,
    TranslationRequest,
    Verdict,
)

logger = logging.getLogger(__name__)

FALLBACK_STRATEGIES = frozenset({"canned-fallback", "emergency-content"})


@dataclass
class OutcomeSample:
    """Résultat résumé, conservé dans la fenêtre glissante."""
    recorded_at: float
    language_pair: str
    verdict: Verdict
    strategy_used: str
    target_script_ratio: float
    duration_ms: float


class QualityMonitor:
    """Agrégateur passif des résultats de traduction.

    Expose le taux de PASS, le taux d'utilisation des replis, la pureté
    moyenne par paire de langues et une alerte quand les replis dépassent
    le seuil configuré sur la fenêtre.
    """

    def __init__(
        self,
        window_seconds: Optional[int] = None,
        alert_threshold: Optional[float] = None,
        min_samples: Optional[int] = None,
        review_queue_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds or settings.MONITOR_WINDOW_SECONDS
        self.alert_threshold = settings.FALLBACK_ALERT_THRESHOLD if alert_threshold is None else alert_threshold
        self.min_samples = settings.MONITOR_MIN_SAMPLES if min_samples is None else min_samples
        self.clock = clock

        self._lock = threading.Lock()
        self._samples: Deque[OutcomeSample] = deque()
        # Les plus anciens sont écartés quand la file est pleine
        self._review_queue: Deque[TranslationOutcome] = deque(
            maxlen=review_queue_size or settings.REVIEW_QUEUE_SIZE
        )
        self._recent_requests: "OrderedDict[str, TranslationRequest]" = OrderedDict()
        self._alert_active = False

        self.total_outcomes = 0
        self.cleaning_invocations = 0
        self.cleaning_rule_hits: Dict[str, int] = {}
        self.last_regression_run: Optional[RegressionSuiteResult] = None

    def record(self, outcome: TranslationOutcome, request: TranslationRequest) -> None:
        """Enregistre un résultat et émet l'événement structuré correspondant."""
        sample = OutcomeSample(
            recorded_at=self.clock(),
            language_pair=f"{request.source_language}-{request.target_language}",
            verdict=outcome.purity_score.verdict,
            strategy_used=outcome.strategy_used,
            target_script_ratio=outcome.purity_score.target_script_ratio,
            duration_ms=outcome.duration_ms,
        )
        with self._lock:
            self._samples.append(sample)
            self.total_outcomes += 1
            if outcome.priority_review:
                if len(self._review_queue) == self._review_queue.maxlen:
                    logger.warning("Review queue full, dropping outcome %s", self._review_queue[0].request_id)
                self._review_queue.append(outcome)
            self._trim()

        events.log(
            "INFO",
            "translation_outcome",
            request_id=outcome.request_id,
            source_language=request.source_language,
            target_language=request.target_language,
            domain_hint=request.domain_hint,
            verdict=outcome.purity_score.verdict.value,
            target_script_ratio=outcome.purity_score.target_script_ratio,
            source_script_ratio=outcome.purity_score.source_script_ratio,
            foreign_script_ratio=outcome.purity_score.foreign_script_ratio,
            strategy_used=outcome.strategy_used,
            recovery_path=[attempt.strategy_name for attempt in outcome.recovery_path],
            rule_ids_applied=outcome.cleaning_report.rule_ids_applied,
            duration_ms=outcome.duration_ms,
            rule_set_version=outcome.rule_set_version,
            priority_review=outcome.priority_review,
        )
        self._check_alert()

    def record_cleaning(self, target_language: str, report: CleaningReport) -> None:
        with self._lock:
            self.cleaning_invocations += 1
            for rule_id in report.rule_ids_applied + report.rejected_by:
                self.cleaning_rule_hits[rule_id] = self.cleaning_rule_hits.get(rule_id, 0) + 1
        events.log(
            "DEBUG",
            "cleaning_pass",
            target_language=target_language,
            rule_ids_applied=report.rule_ids_applied,
            characters_removed=report.characters_removed,
            substitutions_made=report.substitutions_made,
            rejected_by=report.rejected_by,
        )

    def record_regression_run(self, result: RegressionSuiteResult) -> None:
        self.last_regression_run = result
        events.log(
            "INFO" if result.ok else "WARNING",
            "regression_suite_run",
            rule_set_version=result.rule_set_version,
            passed=[case.case_id for case in result.passed],
            failed=[case.case_id for case in result.failed],
            ran_at=result.ran_at.isoformat(),
        )

    def remember_request(self, request: TranslationRequest) -> None:
        with self._lock:
            self._recent_requests[request.id] = request
            while len(self._recent_requests) > settings.RECENT_REQUESTS_SIZE:
                self._recent_requests.popitem(last=False)

    def get_request(self, request_id: str) -> Optional[TranslationRequest]:
        return self._recent_requests.get(request_id)

    def _trim(self) -> None:
        horizon = self.clock() - self.window_seconds
        while self._samples and self._samples[0].recorded_at < horizon:
            self._samples.popleft()

    def _window(self) -> List[OutcomeSample]:
        with self._lock:
            self._trim()
            return list(self._samples)

    def pass_rate(self) -> float:
        samples = self._window()
        if not samples:
            return 0.0
        return sum(1 for s in samples if s.verdict == Verdict.PASS) / len(samples)

    def fallback_rate(self) -> float:
        samples = self._window()
        if not samples:
            return 0.0
        return sum(1 for s in samples if s.strategy_used in FALLBACK_STRATEGIES) / len(samples)

    def mean_purity_by_pair(self) -> Dict[str, float]:
        totals: Dict[str, List[float]] = {}
        for sample in self._window():
            totals.setdefault(sample.language_pair, []).append(sample.target_script_ratio)
        return {pair: sum(values) / len(values) for pair, values in totals.items()}

    def strategy_counts(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for sample in self._window():
            counts[sample.strategy_used] = counts.get(sample.strategy_used, 0) + 1
        return counts

    def alert_active(self) -> bool:
        samples = self._window()
        if len(samples) < self.min_samples or not samples:
            return False
        return self.fallback_rate() > self.alert_threshold

    def _check_alert(self) -> None:
        active = self.alert_active()
        if active and not self._alert_active:
            logger.warning("Fallback usage above %.0f%% over the window", self.alert_threshold * 100)
            events.log(
                "WARNING",
                "fallback_alert",
                fallback_rate=self.fallback_rate(),
                threshold=self.alert_threshold,
                window_seconds=self.window_seconds,
            )
        self._alert_active = active

    @property
    def review_queue(self) -> List[TranslationOutcome]:
        with self._lock:
            return list(self._review_queue)

    def snapshot(self) -> dict:
        """Retourne un instantané des métriques."""
        samples = self._window()
        last_run = self.last_regression_run
        return {
            "window_seconds": self.window_seconds,
            "window_outcomes": len(samples),
            "total_outcomes": self.total_outcomes,
            "pass_rate": self.pass_rate(),
            "fallback_rate": self.fallback_rate(),
            "mean_purity_by_pair": self.mean_purity_by_pair(),
            "strategy_counts": self.strategy_counts(),
            "mean_duration_ms": sum(s.duration_ms for s in samples) / len(samples) if samples else 0.0,
            "fallback_alert": self.alert_active(),
            "priority_review_pending": len(self._review_queue),
            "cleaning_invocations": self.cleaning_invocations,
            "cleaning_rule_hits": dict(self.cleaning_rule_hits),
            "last_regression_run": None if last_run is None else {
                "rule_set_version": last_run.rule_set_version,
                "passed": len(last_run.passed),
                "failed": len(last_run.failed),
                "ran_at": last_run.ran_at.isoformat(),
            },
        }
