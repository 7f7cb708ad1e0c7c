"""Application FastAPI du pipeline de pureté des traductions."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Optional

from fastapi import BackgroundTasks, FastAPI, Form, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from puretranslate.config import settings
from puretranslate.errors import ConfigurationConflict, MalformedRuleError, PurityPipelineError, UnknownReport
from puretranslate.events import StructuredLogger
from puretranslate.generator import OllamaGenerator
from puretranslate.models import FeedbackReport, HealthResponse, RegressionCase, TranslationOutcome
from puretranslate.service import PurityService

# Configuration du logging structuré
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(message)s",
)

logger = StructuredLogger(__name__)

service = PurityService.from_settings()

_generator: Optional[OllamaGenerator] = None


def get_generator() -> OllamaGenerator:
    """Client de génération partagé : le circuit breaker voit toutes les requêtes."""
    global _generator
    if _generator is None:
        _generator = OllamaGenerator()
    return _generator


async def close_generator() -> None:
    global _generator
    if _generator is not None:
        await _generator.close()
        _generator = None


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    """Crée le client de génération partagé et lance la suite de non-régression planifiée."""
    get_generator()
    task = None
    if settings.REGRESSION_INTERVAL_SECONDS > 0:
        task = asyncio.create_task(
            service.regression.run_periodically(service.library, settings.REGRESSION_INTERVAL_SECONDS)
        )
    yield
    if task is not None:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
    await close_generator()


# Initialisation FastAPI
app = FastAPI(
    title="PureTranslate",
    description=(
        "Traduction juridique fr/en ↔ ar avec garantie de pureté d'écriture, "
        "récupération sur erreur et amélioration continue par les signalements."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# CORS minimal
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _check_languages(source_lang: str, target_lang: str) -> None:
    if source_lang not in settings.SUPPORTED_LANGUAGES:
        raise HTTPException(400, f"Unsupported source language: {source_lang}")

    if target_lang not in settings.SUPPORTED_LANGUAGES:
        raise HTTPException(400, f"Unsupported target language: {target_lang}")

    if source_lang == target_lang:
        raise HTTPException(400, "Source and target languages must be different")


@app.get("/healthz")
async def health_check() -> HealthResponse:
    """Endpoint de healthcheck."""
    ollama_available = await get_generator().check_health()

    fallback_alert = service.monitor.alert_active()
    status = "healthy" if ollama_available and not fallback_alert else "degraded"
    return HealthResponse(
        status=status,
        ollama_available=ollama_available,
        ollama_url=settings.OLLAMA_BASE_URL,
        fallback_alert=fallback_alert,
        rule_set_version=service.library.current.version,
    )


@app.get("/metrics")
async def get_metrics() -> dict:
    """Retourne l'instantané du suivi qualité."""
    return service.monitor.snapshot()


@app.post("/translate-text")
async def translate_text_endpoint(
    text: str = Form(""),
    source_lang: str = Form(...),
    target_lang: str = Form(...),
    domain_hint: Optional[str] = Form(None),
) -> TranslationOutcome:
    """Traduit un texte ; le texte renvoyé a toujours été nettoyé et validé."""
    _check_languages(source_lang, target_lang)

    outcome = await service.translate(text, source_lang, target_lang, get_generator(), domain_hint=domain_hint)

    logger.log(
        "INFO",
        "Text translated",
        source_lang=source_lang,
        target_lang=target_lang,
        strategy_used=outcome.strategy_used,
        verdict=outcome.purity_score.verdict.value,
        model=settings.OLLAMA_MODEL,
    )
    return outcome


async def _ingest_report(report_id: str) -> None:
    try:
        report = await service.feedback.ingest(report_id)
    except (PurityPipelineError, OSError) as exc:
        logger.log("ERROR", "Feedback processing failed", report_id=report_id, error=str(exc))
        return
    logger.log("INFO", "Feedback processed", report_id=report_id, status=report.status.value)


@app.post("/feedback", status_code=202)
async def report_contamination_endpoint(
    background_tasks: BackgroundTasks,
    reported_text: str = Form(...),
    user_id: str = Form(...),
    original_request_id: Optional[str] = Form(None),
    note: Optional[str] = Form(None),
    suspected_contamination: Optional[str] = Form(None),
    target_language: Optional[str] = Form(None),
) -> dict:
    """Accuse réception d'un signalement ; le traitement se fait en arrière-plan."""
    if target_language is not None and target_language not in settings.SUPPORTED_LANGUAGES:
        raise HTTPException(400, f"Unsupported target language: {target_language}")

    try:
        report_id = service.report_contamination(
            reported_text,
            user_id,
            original_request_id=original_request_id,
            note=note,
            suspected_contamination=suspected_contamination,
            target_language=target_language,
        )
    except ValidationError as exc:
        raise HTTPException(400, f"Malformed feedback report: {exc.errors()[0]['msg']}") from exc

    background_tasks.add_task(_ingest_report, report_id)
    return {"report_id": report_id, "status": "new"}


@app.get("/feedback/{report_id}")
async def get_feedback_endpoint(report_id: str) -> FeedbackReport:
    try:
        return service.feedback.get(report_id)
    except UnknownReport as exc:
        raise HTTPException(404, f"Unknown feedback report: {report_id}") from exc


@app.post("/feedback/{report_id}/reject")
async def reject_feedback_endpoint(report_id: str, reason: str = Form(...)) -> FeedbackReport:
    """Rejette manuellement un signalement en cours d'examen."""
    try:
        return service.feedback.reject(report_id, reason)
    except UnknownReport as exc:
        raise HTTPException(404, f"Unknown feedback report: {report_id}") from exc
    except PurityPipelineError as exc:
        raise HTTPException(409, str(exc)) from exc


@app.post("/feedback/{report_id}/approve")
async def approve_feedback_endpoint(report_id: str) -> FeedbackReport:
    """Valide manuellement la règle candidate ; la suite de non-régression reste obligatoire."""
    try:
        report = await service.feedback.approve(report_id)
    except UnknownReport as exc:
        raise HTTPException(404, f"Unknown feedback report: {report_id}") from exc
    except PurityPipelineError as exc:
        raise HTTPException(409, str(exc)) from exc

    logger.log("INFO", "Feedback approved", report_id=report_id, status=report.status.value)
    return report


@app.post("/regression/run")
async def run_regression_endpoint() -> dict:
    result = await service.run_regression()
    return {
        "ok": result.ok,
        **result.model_dump(mode="json"),
    }


@app.post("/regression/cases/{case_id}/deactivate")
async def deactivate_case_endpoint(case_id: str, justification: str = Form(...)) -> RegressionCase:
    """Désactive un cas de non-régression (jamais supprimé)."""
    try:
        return service.regression.deactivate(case_id, justification)
    except KeyError as exc:
        raise HTTPException(404, f"Unknown regression case: {case_id}") from exc
    except ValueError as exc:
        raise HTTPException(400, str(exc)) from exc


@app.get("/patterns")
async def get_patterns() -> dict:
    """Retourne l'ensemble de règles actif."""
    return service.library.current.to_dict()


@app.post("/patterns/reload")
async def reload_patterns_endpoint() -> dict:
    """Relit le fichier de règles et l'active seulement si la suite passe."""
    try:
        published = await service.reload_patterns()
    except ConfigurationConflict as exc:
        logger.log(
            "WARNING",
            "Pattern reload blocked by regression suite",
            failed_case_ids=exc.failed_case_ids,
        )
        raise HTTPException(
            409,
            {"error": "Regression suite failed", "failed_case_ids": exc.failed_case_ids},
        ) from exc
    except MalformedRuleError as exc:
        raise HTTPException(400, str(exc)) from exc

    logger.log("INFO", "Pattern library reloaded", rule_set_version=published.version)
    return {"rule_set_version": published.version, "rules": len(published.rules)}


@app.get("/monitor/alerts")
async def get_alerts() -> dict:
    monitor = service.monitor
    return {
        "fallback_alert": monitor.alert_active(),
        "fallback_rate": monitor.fallback_rate(),
        "threshold": monitor.alert_threshold,
        "window_seconds": monitor.window_seconds,
    }


@app.get("/monitor/review-queue")
async def get_review_queue() -> dict:
    """Résultats passés par le contenu d'urgence, à revoir en priorité."""
    queue = service.monitor.review_queue
    return {
        "count": len(queue),
        "items": [outcome.model_dump(mode="json") for outcome in queue],
    }


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
