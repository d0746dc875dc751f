"""Name matching between a sequence's charactersInvolved and the cast.

The script model writes character names into each sequence freely, so
names are compared loosely: trimmed, case-insensitive, and either name
containing the other counts as a match. An exact match is preferred when
one exists, which keeps "Ann" from also pulling in "Anna".
"""

from typing import Iterable

from dramaforge.schemas.project import Character, Sequence


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


def names_match(a: str, b: str) -> bool:
    """Loose name equality.

    Examples:
        >>> names_match(" Lin Yue ", "lin yue")
        True
        >>> names_match("Old Chen", "Chen")
        True
        >>> names_match("", "Chen")
        False
    """
    n1, n2 = _normalize(a), _normalize(b)
    if not n1 or not n2:
        return False
    return n1 == n2 or n1 in n2 or n2 in n1


def resolve_involved_characters(
    involved: Iterable[str], characters: list[Character]
) -> list[Character]:
    """Return the cast members referenced by involved, in cast order.

    For each involved name an exact (normalized) match wins; only when no
    character matches exactly does containment matching apply.
    """
    selected: set[int] = set()
    for name in involved:
        exact = [
            i for i, c in enumerate(characters)
            if _normalize(c.name) and _normalize(c.name) == _normalize(name)
        ]
        if exact:
            selected.update(exact)
            continue
        selected.update(
            i for i, c in enumerate(characters) if names_match(name, c.name)
        )
    return [c for i, c in enumerate(characters) if i in selected]


def build_character_context(characters: Iterable[Character]) -> str:
    """Format "Name: visual features; ..." for storyboard prompts."""
    return "; ".join(f"{c.name}: {c.visual_features}" for c in characters)


def reference_urls(characters: Iterable[Character]) -> list[str]:
    """Portrait URLs of the given characters, skipping those without one."""
    return [c.portrait_url for c in characters if c.portrait_url]


def rename_character_references(
    sequences: list[Sequence], original_name: str, new_name: str
) -> int:
    """Rewrite exact occurrences of original_name in charactersInvolved.

    Mutates sequences in place and returns how many entries changed.
    """
    if original_name == new_name:
        return 0
    changed = 0
    for sequence in sequences:
        updated = []
        for name in sequence.characters_involved:
            if name == original_name:
                updated.append(new_name)
                changed += 1
            else:
                updated.append(name)
        sequence.characters_involved = updated
    return changed


def toggle_involved_character(involved: list[str], name: str) -> list[str]:
    """Remove the entry matching name if present, else append name."""
    for index, existing in enumerate(involved):
        if names_match(existing, name):
            return involved[:index] + involved[index + 1:]
    return [*involved, name]
