"""Tests pour le nettoyeur de contenu."""
import pytest

from puretranslate.cleaner import ContentCleaner, normalize_whitespace
from puretranslate.errors import MalformedRuleError
from puretranslate.models import CleaningRule, RuleAction
from puretranslate.patterns import RuleSet

CONTAMINATED_SAMPLES = [
    "محامي دي زادمتصلمحاميProتحليلملفاتV2AUTO-TRANSLATE",
    "الشهود Defined في المادة 1 من قانون الإجراءات الجنائية ال процедة",
    "Les témoins sont Pro V2 الشهود AUTO-TRANSLATE",
    "Defined محامي процедة JuristDZ",
    "محاميProV2AUTO-TRANSLATEتحليل",
    "الشهود Copier le texte في المحكمة​",
    "Hello world",
    "",
]


def test_normalize_whitespace():
    assert normalize_whitespace("  a   b \n\n\n\n c  ") == "a b\n\nc"


def test_leaked_interface_caption_is_stripped(cleaner):
    cleaned, report = cleaner.clean("الشهود Copier le texte في المحكمة", "ar")

    assert "Copier le texte" not in cleaned
    assert cleaned == "الشهود في المحكمة"
    assert report.characters_removed > 0
    assert "chrome-interface-captions" in report.rule_ids_applied


def test_banner_is_substituted(cleaner):
    cleaned, report = cleaner.clean("محامي دي زادمتصلمحاميProتحليلملفاتV2AUTO-TRANSLATE", "ar")

    assert cleaned == "محامي متصل تحليل ملفات"
    assert report.substitutions_made == 1
    assert report.rule_ids_applied == ["leaked-lawyer-banner"]


def test_fused_cyrillic_and_dangling_article(cleaner):
    cleaned, report = cleaner.clean(
        "الشهود Defined في المادة 1 من قانون الإجراءات الجنائية ال процедة", "ar"
    )

    assert cleaned == "الشهود في المادة 1 من قانون الإجراءات الجنائية"
    assert report.rule_ids_applied == [
        "cyrillic-fused-token",
        "dangling-arabic-article",
        "english-legal-fragments",
    ]


def test_badges_glued_together_need_a_second_pass(cleaner):
    cleaned, report = cleaner.clean("محاميProV2", "ar")

    assert cleaned == "محامي"
    assert report.passes == 2


@pytest.mark.parametrize("text", CONTAMINATED_SAMPLES)
@pytest.mark.parametrize("aggressive", [False, True])
def test_cleaning_is_idempotent(cleaner, text, aggressive):
    once, _ = cleaner.clean(text, "ar", aggressive=aggressive)
    twice, second_report = cleaner.clean(once, "ar", aggressive=aggressive)

    assert twice == once
    assert second_report.rule_ids_applied == []
    assert second_report.is_empty


def test_flag_reject_does_not_modify_text(cleaner):
    cleaned, report = cleaner.clean("Hello world", "ar")

    assert cleaned == "Hello world"
    assert report.rejected_by == ["short-latin-echo"]
    assert report.rule_ids_applied == []
    assert report.flagged_reject


def test_aggressive_rules_need_opt_in(cleaner):
    text = "القانون Bonjour 12"

    standard, _ = cleaner.clean(text, "ar")
    aggressive, report = cleaner.clean(text, "ar", aggressive=True)

    assert standard == text
    assert aggressive == "القانون 12"
    assert "aggressive-latin-runs" in report.rule_ids_applied


def test_latin_target_strips_arabic_only_when_aggressive(cleaner):
    cleaned, report = cleaner.clean("Le tribunal محكمة a statué", "fr", aggressive=True)

    assert cleaned == "Le tribunal a statué"
    assert report.rule_ids_applied == ["aggressive-arabic-runs"]


def test_every_invocation_is_recorded(cleaner, monitor):
    cleaner.clean("الشهود في المحكمة", "ar")
    cleaner.clean("Hello world", "ar")

    assert monitor.cleaning_invocations == 2
    assert monitor.cleaning_rule_hits == {"short-latin-echo": 1}


def test_explicit_rule_set_snapshot_is_used(cleaner, library):
    rule = CleaningRule(id="zorglub", pattern="Zorglub", literal=True)
    candidate = library.current.with_rules([rule])

    cleaned, report = cleaner.clean("المحكمة Zorglub", "ar", rule_set=candidate)
    unchanged, _ = cleaner.clean("المحكمة Zorglub", "ar")

    assert cleaned == "المحكمة"
    assert report.rule_ids_applied == ["zorglub"]
    assert unchanged == "المحكمة Zorglub"


def test_non_converging_rule_set_is_malformed(library):
    rule_set = RuleSet(
        version=1,
        rules=(
            CleaningRule(id="a", pattern="foo", action=RuleAction.SUBSTITUTE, replacement="bar", priority=1),
            CleaningRule(id="b", pattern="bar", action=RuleAction.SUBSTITUTE, replacement="foo", priority=2),
        ),
    )
    cleaner = ContentCleaner(library, max_passes=3)

    with pytest.raises(MalformedRuleError):
        cleaner.clean("foo", "fr", rule_set=rule_set)
