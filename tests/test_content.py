# tests/test_content.py
import pytest

from leadflow.content import (
    DEFAULT_CONTENT,
    MessageComposer,
    TEMPLATES,
    fallback_content,
    review_context,
)
from leadflow.models import Review

from conftest import make_block, make_record


# ═══════════════════════════════════════════════════════════════════
# Fallback content
# ═══════════════════════════════════════════════════════════════════

def test_fallback_mentions_exact_rating_when_high():
    assert fallback_content(make_record(rating=4.8)) == "especialmente por sus excelentes valoraciones de 4.8 estrellas"


def test_fallback_high_tier_starts_at_four_and_a_half():
    assert "4.5 estrellas" in fallback_content(make_record(rating=4.5))


def test_fallback_good_reputation_tier():
    assert fallback_content(make_record(rating=4.0)) == "por su buena reputación online y valoraciones positivas"
    assert fallback_content(make_record(rating=4.4)) == "por su buena reputación online y valoraciones positivas"


@pytest.mark.parametrize("rating", [3.9, 1.0, None])
def test_fallback_presence_tier(rating):
    assert fallback_content(make_record(rating=rating)) == "por su presencia en la zona y potencial de crecimiento"


def test_fallback_prefers_enriched_rating():
    record = make_record(rating=3.0)
    record.apply_enrichment(make_block(rating=4.9))
    assert "4.9 estrellas" in fallback_content(record)


def test_fallback_is_deterministic():
    record = make_record(rating=4.7)
    assert fallback_content(record) == fallback_content(record)


# ═══════════════════════════════════════════════════════════════════
# Review context
# ═══════════════════════════════════════════════════════════════════

def test_review_context_keeps_only_positive_reviews():
    record = make_record()
    record.apply_enrichment(make_block(reviews=[
        Review(rating=5, text="Paella espectacular"),
        Review(rating=2, text="Muy lento"),
        Review(rating=4, text="Buen trato"),
        Review(rating=None, text="Sin nota"),
    ]))
    assert review_context(record) == "Paella espectacular Buen trato"


def test_review_context_is_truncated():
    record = make_record()
    record.apply_enrichment(make_block(reviews=[Review(rating=5, text="x" * 800), Review(rating=5, text="y" * 800)]))
    assert len(review_context(record)) == 1000


def test_review_context_empty_without_enrichment():
    assert review_context(make_record()) == ""


# ═══════════════════════════════════════════════════════════════════
# Composition
# ═══════════════════════════════════════════════════════════════════

def test_compose_fills_every_placeholder():
    composer = MessageComposer(sender_name="Ana")
    record = make_record(name="Cafe Sol", personalized_content="por su café de especialidad")
    message, used = composer.compose(record, template_name="formal")

    assert used == "formal"
    assert "Ana" in message
    assert "Cafe Sol" in message
    assert "por su café de especialidad" in message
    assert "{" not in message


def test_compose_picks_template_from_category():
    composer = MessageComposer(sender_name="Ana")
    record = make_record(name="Restaurante Casa Pepe", personalized_content="x")
    _, used = composer.compose(record)
    assert used == "restaurant"


def test_compose_falls_back_to_default_template():
    composer = MessageComposer(sender_name="Ana")
    record = make_record(name="Ferretería López", personalized_content="x")
    _, used = composer.compose(record, template_name="does-not-exist")
    assert used == "default"


def test_compose_uses_default_content_when_missing():
    message, _ = MessageComposer(sender_name="Ana").compose(make_record(), template_name="default")
    assert DEFAULT_CONTENT in message


def test_custom_template():
    composer = MessageComposer(sender_name="Ana")
    composer.add_template("short", "Hola {BUSINESS_NAME}, soy {YOUR_NAME}.")
    message, used = composer.compose(make_record(name="Bar Luna"), template_name="short")
    assert (message, used) == ("Hola Bar Luna, soy Ana.", "short")


def test_all_builtin_templates_have_placeholders():
    for name, template in TEMPLATES.items():
        assert "{YOUR_NAME}" in template, name
        assert "{BUSINESS_NAME}" in template, name
        assert "{PERSONALIZED_CONTENT}" in template, name


# ═══════════════════════════════════════════════════════════════════
# Validation
# ═══════════════════════════════════════════════════════════════════

def test_validate_accepts_normal_message():
    composer = MessageComposer(sender_name="Ana")
    message, _ = composer.compose(make_record(personalized_content="por su terraza"))
    check = composer.validate(message)
    assert check.is_valid
    assert check.length == len(message)
    assert check.word_count > 10


def test_validate_flags_long_message():
    check = MessageComposer(max_length=20).validate("a" * 21)
    assert not check.is_valid
    assert "too long" in check.warnings[0]


def test_validate_flags_placeholders_and_fallback_values():
    composer = MessageComposer()  # no sender name
    message, _ = composer.compose(make_record(name=None))
    warnings = composer.validate(message).warnings
    assert any("fallback values" in w for w in warnings)
    assert any("placeholders" in w for w in composer.validate("Hola {BUSINESS_NAME}").warnings)


def test_validate_flags_spam_keywords():
    warnings = MessageComposer().validate("Web gratis, oferta limitada").warnings
    assert warnings == ["Message contains potential spam keywords"]
