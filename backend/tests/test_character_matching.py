"""Loose character-name matching between sequences and the cast."""

from dramaforge.schemas.project import Character, Sequence
from dramaforge.services.character_matching import (
    build_character_context,
    names_match,
    reference_urls,
    rename_character_references,
    resolve_involved_characters,
    toggle_involved_character,
)


def _cast(*names):
    return [
        Character(name=name, visual_features=f"{name} look", portrait_url=f"https://img/{name}.png")
        for name in names
    ]


def test_names_match_is_trimmed_case_insensitive_and_contains():
    assert names_match(" ann ", "Ann")
    assert names_match("Old Chen", "chen")
    assert not names_match("Ann", "Bob")
    assert not names_match("", "Ann")


def test_exact_match_is_preferred_over_containment():
    cast = _cast("Ann", "Anna", "Bob")

    resolved = resolve_involved_characters(["ann"], cast)

    assert [c.name for c in resolved] == ["Ann"]


def test_containment_is_the_fallback():
    cast = _cast("Chen", "Bob")

    resolved = resolve_involved_characters(["Old Chen (father)"], cast)

    assert [c.name for c in resolved] == ["Chen"]


def test_resolution_keeps_cast_order_and_ignores_unknowns():
    cast = _cast("Ann", "Bob", "Cara")

    resolved = resolve_involved_characters(["Cara", "Nobody", "Ann", "ann"], cast)

    assert [c.name for c in resolved] == ["Ann", "Cara"]


def test_context_and_reference_urls():
    cast = _cast("Ann", "Bob")
    cast[1].portrait_url = None

    assert build_character_context(cast) == "Ann: Ann look; Bob: Bob look"
    assert reference_urls(cast) == ["https://img/Ann.png"]


def test_rename_rewrites_only_exact_references():
    sequences = [
        Sequence(characters_involved=["Ann", "Bob"]),
        Sequence(characters_involved=["Anna"]),
    ]

    changed = rename_character_references(sequences, "Ann", "Annie")

    assert changed == 1
    assert sequences[0].characters_involved == ["Annie", "Bob"]
    assert sequences[1].characters_involved == ["Anna"]


def test_toggle_removes_loose_match_or_appends():
    assert toggle_involved_character(["Ann", "Bob"], "bob") == ["Ann"]
    assert toggle_involved_character(["Ann"], "Cara") == ["Ann", "Cara"]
