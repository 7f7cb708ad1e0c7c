"""Tests d'intégration pour PureTranslate."""
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from puretranslate.errors import TransportFailure
from puretranslate import main
from puretranslate.main import app


@pytest.fixture
def client():
    """Client de test FastAPI."""
    return TestClient(app)


def _mock_generator(output=None, side_effect=None, **methods):
    """Crée un mock d'OllamaGenerator asynchrone."""
    generator = AsyncMock()
    generator.return_value = output
    generator.side_effect = side_effect
    for name, value in methods.items():
        getattr(generator, name).return_value = value
    return generator


def test_health_check(client):
    """Le healthcheck doit retourner l'état du service Ollama."""
    generator = _mock_generator(check_health=True)
    with patch("puretranslate.main.get_generator", return_value=generator):
        response = client.get("/healthz")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["ollama_available"] is True
    assert data["fallback_alert"] is False
    assert data["rule_set_version"] >= 1


def test_health_check_ollama_down(client):
    generator = _mock_generator(check_health=False)
    with patch("puretranslate.main.get_generator", return_value=generator):
        response = client.get("/healthz")

    assert response.json()["status"] == "degraded"


def test_metrics_endpoint(client):
    """Les métriques exposent les taux de la fenêtre glissante."""
    response = client.get("/metrics")
    assert response.status_code == 200
    data = response.json()
    for key in ("pass_rate", "fallback_rate", "mean_purity_by_pair", "strategy_counts", "fallback_alert"):
        assert key in data


def test_translate_text_success(client):
    """La traduction renvoie un texte nettoyé et validé."""
    generator = _mock_generator("الشهود AUTO-TRANSLATE معرفون في القانون")
    with patch("puretranslate.main.get_generator", return_value=generator):
        response = client.post(
            "/translate-text",
            data={
                "text": "Les témoins sont définis dans le code civil",
                "source_lang": "fr",
                "target_lang": "ar",
            },
        )

    assert response.status_code == 200
    data = response.json()
    assert data["text"] == "الشهود معرفون في القانون"
    assert data["strategy_used"] == "primary"
    assert data["purity_score"]["verdict"] == "PASS"
    assert data["cleaning_report"]["rule_ids_applied"] == ["chrome-auto-translate"]


def test_translate_text_generation_down(client):
    """Même sans génération, la réponse contient un texte non vide."""
    generator = _mock_generator(side_effect=TransportFailure("connection refused"))
    with patch("puretranslate.main.get_generator", return_value=generator):
        response = client.post(
            "/translate-text",
            data={
                "text": "Le tribunal statue en dernier ressort",
                "source_lang": "fr",
                "target_lang": "ar",
            },
        )

    assert response.status_code == 200
    data = response.json()
    assert data["text"].strip()
    assert data["strategy_used"] == "emergency-content"
    assert data["priority_review"] is True

    queue = client.get("/monitor/review-queue").json()
    assert queue["count"] >= 1
    assert data["request_id"] in [item["request_id"] for item in queue["items"]]


def test_translate_text_with_domain_fallback(client):
    generator = _mock_generator("Hello world")
    with patch("puretranslate.main.get_generator", return_value=generator):
        response = client.post(
            "/translate-text",
            data={
                "text": "Le divorce est prononcé",
                "source_lang": "fr",
                "target_lang": "ar",
                "domain_hint": "legal-family",
            },
        )

    assert response.status_code == 200
    data = response.json()
    assert data["strategy_used"] == "canned-fallback"
    assert data["purity_score"]["verdict"] == "DEGRADED"


def test_translate_text_invalid_language(client):
    """La traduction échoue si la langue cible est invalide."""
    response = client.post(
        "/translate-text",
        data={
            "text": "Bonjour",
            "source_lang": "fr",
            "target_lang": "de",
        },
    )

    assert response.status_code == 400


def test_translate_text_same_language(client):
    """La traduction échoue si la source et la cible sont identiques."""
    response = client.post(
        "/translate-text",
        data={
            "text": "Bonjour",
            "source_lang": "ar",
            "target_lang": "ar",
        },
    )

    assert response.status_code == 400


def test_feedback_is_acknowledged_then_processed(client):
    """Un signalement sans contamination reproductible finit rejeté."""
    response = client.post(
        "/feedback",
        data={"reported_text": "قررت المحكمة الحكم", "user_id": "user-42"},
    )

    assert response.status_code == 202
    data = response.json()
    assert data["status"] == "new"

    report = client.get(f"/feedback/{data['report_id']}").json()
    assert report["status"] == "rejected"
    assert report["reported_by_user_id"] == "user-42"


def test_rejecting_a_closed_report_conflicts(client):
    response = client.post(
        "/feedback",
        data={"reported_text": "الحكم نهائي", "user_id": "user-42"},
    )
    report_id = response.json()["report_id"]

    response = client.post(f"/feedback/{report_id}/reject", data={"reason": "duplicate"})

    assert response.status_code == 409


def test_malformed_feedback(client):
    response = client.post("/feedback", data={"reported_text": "   ", "user_id": "user-42"})
    assert response.status_code == 400


def test_feedback_invalid_language(client):
    response = client.post(
        "/feedback",
        data={"reported_text": "texte", "user_id": "user-42", "target_language": "de"},
    )
    assert response.status_code == 400


def test_unknown_feedback_report(client):
    assert client.get("/feedback/missing").status_code == 404
    assert client.post("/feedback/missing/reject", data={"reason": "x"}).status_code == 404


def test_regression_run(client):
    response = client.post("/regression/run")

    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["failed"] == []
    assert len(data["passed"]) >= 6


def test_deactivate_unknown_case(client):
    response = client.post("/regression/cases/missing/deactivate", data={"justification": "obsolete"})
    assert response.status_code == 404


def test_deactivate_needs_justification(client):
    response = client.post("/regression/cases/user_report_001/deactivate", data={"justification": "  "})
    assert response.status_code == 400


def test_patterns_endpoint(client):
    response = client.get("/patterns")

    assert response.status_code == 200
    data = response.json()
    rule_ids = [rule["id"] for rule in data["rules"]]
    assert "chrome-auto-translate" in rule_ids


def test_patterns_reload(client):
    """Le rechargement publie une nouvelle version si la suite passe."""
    before = client.get("/patterns").json()["version"]

    response = client.post("/patterns/reload")

    assert response.status_code == 200
    assert response.json()["rule_set_version"] == before + 1


def test_alerts_endpoint(client):
    response = client.get("/monitor/alerts")

    assert response.status_code == 200
    data = response.json()
    assert data["fallback_alert"] is False
    assert data["threshold"] == 0.2


def test_generation_client_is_shared_across_requests(client, monkeypatch):
    """Un seul client de génération : son circuit breaker voit toutes les requêtes."""
    monkeypatch.setattr(main, "_generator", None)
    generator = _mock_generator(check_health=True)
    with patch("puretranslate.main.OllamaGenerator", return_value=generator) as factory:
        client.get("/healthz")
        client.get("/healthz")

    factory.assert_called_once()
    assert main.get_generator() is generator


def test_approve_unknown_report(client):
    assert client.post("/feedback/missing/approve").status_code == 404


def test_approving_a_rejected_report_conflicts(client):
    response = client.post(
        "/feedback",
        data={"reported_text": "الحكم نهائي", "user_id": "user-42"},
    )
    report_id = response.json()["report_id"]

    response = client.post(f"/feedback/{report_id}/approve")

    assert response.status_code == 409
