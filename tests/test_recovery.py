"""Tests pour le coordinateur de récupération."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from puretranslate.errors import TransportFailure
from puretranslate.generator import GenerationCache
from puretranslate.models import FailureKind, TranslationRequest, Verdict
from puretranslate.recovery import STRATEGY_ORDER, ErrorRecoveryCoordinator, FailureContext


def _request(text="Les témoins sont présents", domain_hint=None):
    return TranslationRequest(
        source_text=text,
        source_language="fr",
        target_language="ar",
        domain_hint=domain_hint,
    )


def _assert_in_strategy_order(path):
    names = [attempt.strategy_name for attempt in path]
    assert names == sorted(names, key=STRATEGY_ORDER.index)
    assert all(not attempt.succeeded for attempt in path[:-1])


@pytest.mark.asyncio
async def test_targeted_recleaning_after_method_switching(gateway):
    generate = AsyncMock(return_value="Les témoins sont Pro V2 الشهود")

    outcome = await gateway.translate(_request(), generate)

    assert [attempt.strategy_name for attempt in outcome.recovery_path] == [
        "method-switching",
        "targeted-recleaning",
    ]
    assert outcome.strategy_used == "targeted-recleaning"
    assert outcome.text == "الشهود"
    assert outcome.purity_score.verdict == Verdict.PASS
    assert outcome.cleaning_report.rule_ids_applied == ["aggressive-latin-runs"]
    _assert_in_strategy_order(outcome.recovery_path)


@pytest.mark.asyncio
async def test_method_switching_uses_strict_prompt(gateway):
    generate = AsyncMock(side_effect=["الشهود Les témoins sont présents", "الشهود حاضرون"])

    outcome = await gateway.translate(_request(), generate)

    assert outcome.strategy_used == "method-switching"
    first_prompt = generate.await_args_list[0].args[0]
    second_prompt = generate.await_args_list[1].args[0]
    assert first_prompt != second_prompt


@pytest.mark.asyncio
async def test_unsalvageable_goes_straight_to_canned_content(gateway):
    generate = AsyncMock(return_value="Hello world")

    outcome = await gateway.translate(_request(domain_hint="legal-family"), generate)

    assert outcome.strategy_used == "canned-fallback"
    assert [attempt.strategy_name for attempt in outcome.recovery_path] == ["canned-fallback"]
    assert outcome.purity_score.verdict == Verdict.DEGRADED
    assert outcome.text.startswith("يتعلق هذا المحتوى")
    assert not outcome.priority_review
    assert generate.await_count == 1


@pytest.mark.asyncio
async def test_everything_fails_falls_through_to_emergency(gateway):
    generate = AsyncMock(side_effect=TransportFailure("down"))

    outcome = await gateway.translate(_request(domain_hint="unknown-domain"), generate)

    assert [attempt.strategy_name for attempt in outcome.recovery_path] == [
        "method-switching",
        "emergency-content",
    ]
    assert outcome.recovery_path[0].error == "down"
    assert outcome.strategy_used == "emergency-content"
    assert outcome.priority_review
    assert outcome.text == "تعذر إتمام الترجمة بشكل سليم. يرجى إعادة المحاولة لاحقا."
    _assert_in_strategy_order(outcome.recovery_path)


@pytest.mark.asyncio
async def test_degraded_not_accepted_from_strict_strategy(cleaner, validator, catalog):
    coordinator = ErrorRecoveryCoordinator(
        cleaner, validator, catalog, cache=GenerationCache(4), degrade_tolerant=set()
    )
    generate = AsyncMock(return_value="محكمة محكمة محكمة محكمة ab")
    failure = FailureContext(FailureKind.TRANSPORT, cleaner.library.current, error="down")

    outcome = await coordinator.recover(_request(text="Les témoins"), failure, generate)

    names = [attempt.strategy_name for attempt in outcome.recovery_path]
    assert names == ["method-switching", "targeted-recleaning", "emergency-content"]
    assert outcome.recovery_path[0].purity_score.verdict == Verdict.DEGRADED
    assert not outcome.recovery_path[0].succeeded


@pytest.mark.asyncio
async def test_internal_failure_skips_to_emergency(coordinator, library):
    generate = AsyncMock()
    failure = FailureContext(FailureKind.INTERNAL, library.current, error="bad rule")

    outcome = await coordinator.recover(_request(domain_hint="legal-family"), failure, generate)

    assert outcome.strategy_used == "emergency-content"
    assert len(outcome.recovery_path) == 1
    generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_identical_request_gets_a_fresh_strict_generation(gateway):
    generate = AsyncMock(
        side_effect=[
            "الشهود Les témoins sont présents ici",
            "الشهود Witnesses are here today",
            "الشهود Les témoins sont présents ici",
            "الشهود حاضرون",
        ]
    )

    first = await gateway.translate(_request("Les témoins sont présents ici"), generate)
    second = await gateway.translate(_request("Les témoins sont présents ici"), generate)

    assert first.strategy_used != "method-switching"
    assert second.strategy_used == "method-switching"
    assert second.text == "الشهود حاضرون"
    assert generate.await_count == 4


@pytest.mark.asyncio
async def test_abandoned_recovery_generation_is_reused_once(coordinator, library):
    failure = FailureContext(FailureKind.TRANSPORT, library.current, error="down")
    release = asyncio.Event()

    async def slow_generate(prompt, source_text):
        await release.wait()
        return "الشهود حاضرون"

    abandoned = asyncio.create_task(coordinator.recover(_request(), failure, slow_generate))
    await asyncio.sleep(0)
    abandoned.cancel()
    with pytest.raises(asyncio.CancelledError):
        await abandoned
    release.set()
    for _ in range(5):
        await asyncio.sleep(0)

    down = AsyncMock(side_effect=TransportFailure("down"))
    outcome = await coordinator.recover(_request(), failure, down)

    assert outcome.strategy_used == "method-switching"
    assert outcome.text == "الشهود حاضرون"
    down.assert_not_awaited()
    assert len(coordinator.cache) == 0


def test_emergency_message_per_language(coordinator, library):
    request = TranslationRequest(source_text="x", source_language="ar", target_language="en")

    outcome = coordinator.emergency(request, library.current, "test")

    assert outcome.text == "The translation could not be completed cleanly. Please try again later."
    assert outcome.purity_score.verdict == Verdict.DEGRADED
    assert outcome.priority_review
