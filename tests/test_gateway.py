"""Tests pour la passerelle de traduction."""
import re
from unittest.mock import AsyncMock

import pytest

from puretranslate.errors import TransportFailure
from puretranslate.generator import PRIMARY_METHOD, build_prompt
from puretranslate.models import CleaningRule, RuleAction, TranslationRequest, Verdict
from puretranslate.patterns import RuleSet

LATIN_RUN = re.compile(r"[A-Za-zÀ-ɏ]{3,}")


def _request(text="Les témoins sont définis dans le code", source="fr", target="ar", domain_hint=None):
    return TranslationRequest(
        source_text=text,
        source_language=source,
        target_language=target,
        domain_hint=domain_hint,
    )


@pytest.mark.asyncio
async def test_clean_first_pass_returns_immediately(gateway):
    generate = AsyncMock(return_value="الشهود معرفون في القانون")

    outcome = await gateway.translate(_request(), generate)

    assert outcome.strategy_used == "primary"
    assert outcome.recovery_path == []
    assert outcome.purity_score.verdict == Verdict.PASS
    assert outcome.purity_score.target_script_ratio >= 0.95
    assert not LATIN_RUN.search(outcome.text)
    generate.assert_awaited_once_with(build_prompt(PRIMARY_METHOD, "fr", "ar"), "Les témoins sont définis dans le code")


@pytest.mark.asyncio
async def test_contaminated_output_is_cleaned_before_return(gateway):
    generate = AsyncMock(return_value="الشهود AUTO-TRANSLATE معرفون Pro في القانون")

    outcome = await gateway.translate(_request(), generate)

    assert outcome.strategy_used == "primary"
    assert outcome.text == "الشهود معرفون في القانون"
    assert outcome.cleaning_report.rule_ids_applied == ["chrome-auto-translate", "chrome-version-badge"]
    assert not LATIN_RUN.search(outcome.text)


@pytest.mark.asyncio
async def test_transport_failure_then_method_switching(gateway):
    generate = AsyncMock(side_effect=[TransportFailure("down"), "الشهود معرفون في القانون"])

    outcome = await gateway.translate(_request(), generate)

    assert outcome.strategy_used == "method-switching"
    assert len(outcome.recovery_path) == 1
    assert outcome.recovery_path[0].succeeded
    assert outcome.purity_score.verdict == Verdict.PASS
    assert generate.await_count == 2


@pytest.mark.asyncio
async def test_outcome_is_recorded(gateway, monitor):
    generate = AsyncMock(return_value="الشهود معرفون في القانون")
    request = _request()

    outcome = await gateway.translate(request, generate)

    assert monitor.total_outcomes == 1
    assert monitor.get_request(request.id) == request
    assert outcome.duration_ms >= 0
    assert outcome.rule_set_version == 1


@pytest.mark.asyncio
async def test_rule_set_snapshot_is_kept_for_the_whole_request(gateway, library):
    snapshot = library.current
    library.publish(snapshot.with_rules([CleaningRule(id="zorglub", pattern="القانون", literal=True)]))
    generate = AsyncMock(return_value="الشهود معرفون في القانون")

    outcome = await gateway.translate(_request(), generate, rule_set=snapshot)

    assert outcome.rule_set_version == 1
    assert outcome.text == "الشهود معرفون في القانون"


@pytest.mark.asyncio
@pytest.mark.parametrize("source_text", ["", "   ", "\n"])
async def test_empty_source_still_returns_text(gateway, source_text):
    generate = AsyncMock(return_value="should not be used")

    outcome = await gateway.translate(_request(text=source_text), generate)

    assert outcome.text.strip()
    assert outcome.strategy_used == "emergency-content"
    assert outcome.priority_review
    generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_source_uses_domain_fallback(gateway):
    outcome = await gateway.translate(_request(text="", domain_hint="legal-family"), AsyncMock())

    assert outcome.strategy_used == "canned-fallback"
    assert outcome.purity_score.verdict == Verdict.DEGRADED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "behaviour",
    [
        {"side_effect": TransportFailure("down")},
        {"side_effect": RuntimeError("boom")},
        {"return_value": "Hello world"},
        {"return_value": "   "},
        {"return_value": "процедура процедура"},
    ],
)
async def test_never_returns_empty_text(gateway, behaviour):
    generate = AsyncMock(**behaviour)

    outcome = await gateway.translate(_request(), generate)

    assert outcome.text.strip()
    assert outcome.purity_score.verdict != Verdict.REJECT


@pytest.mark.asyncio
async def test_unexpected_error_becomes_emergency_content(gateway, monitor):
    generate = AsyncMock(side_effect=RuntimeError("boom"))

    outcome = await gateway.translate(_request(), generate)

    assert outcome.strategy_used == "emergency-content"
    assert outcome.priority_review
    assert "boom" in outcome.recovery_path[-1].input
    assert len(monitor.review_queue) == 1


@pytest.mark.asyncio
async def test_malformed_rule_set_becomes_emergency_content(gateway):
    looping = RuleSet(
        version=9,
        rules=(
            CleaningRule(id="a", pattern="foo", action=RuleAction.SUBSTITUTE, replacement="bar", priority=1),
            CleaningRule(id="b", pattern="bar", action=RuleAction.SUBSTITUTE, replacement="foo", priority=2),
        ),
    )
    generate = AsyncMock(return_value="foo")

    outcome = await gateway.translate(_request(), generate, rule_set=looping)

    assert outcome.strategy_used == "emergency-content"
    assert outcome.rule_set_version == 9
    assert generate.await_count == 1


@pytest.mark.asyncio
async def test_arabic_to_french(gateway):
    generate = AsyncMock(return_value="Le tribunal a rendu son jugement. محكمة")

    outcome = await gateway.translate(
        _request(text="أصدرت المحكمة حكمها", source="ar", target="fr"), generate
    )

    assert outcome.text == "Le tribunal a rendu son jugement."
    assert outcome.strategy_used == "targeted-recleaning"
