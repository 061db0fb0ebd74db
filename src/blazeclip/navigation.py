"""Two-level cursor over category-grouped lists.

Every navigable list (clipboard history, pinned entries, app and search
suggestions) is a mapping of category label to an ordered list, in the
order the categories were first seen. A cursor names one category and a
position in it, or nothing at all. The functions here are pure: they take
the groups and a cursor and return a new cursor. Empty categories are never
a valid target and are skipped.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import TypeVar

T = TypeVar("T")

Groups = Mapping[str, Sequence[T]]


@dataclass(frozen=True)
class CursorPosition:
    category: str | None
    index: int = 0

    @property
    def is_none(self) -> bool:
        return self.category is None


NONE = CursorPosition(None, 0)


def _labels(groups: Groups) -> list[str]:
    return [label for label, items in groups.items() if items]


def _check(groups: Groups, cursor: CursorPosition) -> None:
    assert cursor.category in groups, f"cursor points at missing category {cursor.category!r}"
    assert 0 <= cursor.index < len(groups[cursor.category]), f"cursor index {cursor.index} out of range"


def first(groups: Groups) -> CursorPosition:
    labels = _labels(groups)
    if not labels:
        return NONE
    return CursorPosition(labels[0], 0)


def last(groups: Groups) -> CursorPosition:
    labels = _labels(groups)
    if not labels:
        return NONE
    return CursorPosition(labels[-1], len(groups[labels[-1]]) - 1)


def advance(groups: Groups, cursor: CursorPosition) -> CursorPosition:
    labels = _labels(groups)
    if not labels:
        return NONE
    if cursor.is_none:
        return first(groups)
    _check(groups, cursor)

    if cursor.index + 1 < len(groups[cursor.category]):
        return CursorPosition(cursor.category, cursor.index + 1)
    pos = labels.index(cursor.category)
    return CursorPosition(labels[(pos + 1) % len(labels)], 0)


def retreat(groups: Groups, cursor: CursorPosition) -> CursorPosition:
    labels = _labels(groups)
    if not labels:
        return NONE
    if cursor.is_none:
        return last(groups)
    _check(groups, cursor)

    if cursor.index > 0:
        return CursorPosition(cursor.category, cursor.index - 1)
    prev_label = labels[labels.index(cursor.category) - 1]
    return CursorPosition(prev_label, len(groups[prev_label]) - 1)


def resolve(groups: Groups, cursor: CursorPosition) -> T | None:
    if cursor.is_none:
        return None
    _check(groups, cursor)
    return groups[cursor.category][cursor.index]


def total(groups: Groups) -> int:
    return sum(len(items) for items in groups.values())


def group_by_category(items: Iterable[T], default: str = "Other") -> dict[str, list[T]]:
    """Group items by their ``category`` attribute, keeping first-seen category order."""
    grouped: dict[str, list[T]] = {}
    for item in items:
        label = getattr(item, "category", None) or default
        grouped.setdefault(label, []).append(item)
    return grouped
