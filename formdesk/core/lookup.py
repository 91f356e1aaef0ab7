"""Label -> id resolution for "database" form fields.

A "database" field stores the id of a row in one of a few reference tables
instead of the label the submitter typed/selected. Only the sources in
`SOURCES` can be used; each maps to a model plus its (value, label) columns.

Resolution is an ordered list of strategies, each a pure function
(label, candidates) -> Candidate | None, tried until one matches:

    exact -> longest substring -> without "(...)" suffix -> without "City - " prefix

When nothing matches the caller keeps the raw label.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Callable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from formdesk.db.models.entity import Entity
from formdesk.db.models.uni_mapping import UniMapping
from formdesk.db.models.user import User


class LookupSource(str, enum.Enum):
    ENTITY = "entity"
    USER = "user"
    UNI_MAPPING = "uni_mapping"


@dataclass(frozen=True, slots=True)
class SourceSpec:
    model: type
    value_column: str
    label_column: str


SOURCES: dict[LookupSource, SourceSpec] = {
    LookupSource.ENTITY: SourceSpec(Entity, "entity_id", "name"),
    LookupSource.USER: SourceSpec(User, "id", "name"),
    LookupSource.UNI_MAPPING: SourceSpec(UniMapping, "uni_id", "uni_name"),
}


def parse_source(name: str | None) -> LookupSource | None:
    try:
        return LookupSource((name or "").strip())
    except ValueError:
        return None


@dataclass(frozen=True, slots=True)
class Candidate:
    value: str
    label: str


Strategy = Callable[[str, Sequence[Candidate]], "Candidate | None"]


def strip_parenthetical(label: str) -> str:
    """"University X (English)" -> "University X"."""
    idx = label.find(" (")
    return label[:idx].strip() if idx >= 0 else label.strip()


def strip_city_prefix(label: str) -> str:
    """"Ho Chi Minh City - University X" -> "University X"."""
    idx = label.find(" - ")
    return label[idx + 3 :].strip() if idx >= 0 else label.strip()


def match_exact(label: str, candidates: Sequence[Candidate]) -> Candidate | None:
    # case-insensitive
    needle = label.casefold()
    for c in candidates:
        if c.label.strip().casefold() == needle:
            return c
    return None


def match_longest_substring(label: str, candidates: Sequence[Candidate]) -> Candidate | None:
    needle = label.casefold()
    if not needle:
        return None
    best: Candidate | None = None
    for c in candidates:
        if needle in c.label.casefold() and (best is None or len(c.label) > len(best.label)):
            best = c
    return best


def _substring_after(transform: Callable[[str], str]) -> Strategy:
    def strategy(label: str, candidates: Sequence[Candidate]) -> Candidate | None:
        stripped = transform(label)
        if not stripped or stripped == label:
            return None
        return match_longest_substring(stripped, candidates)

    strategy.__name__ = f"match_after_{transform.__name__}"
    return strategy


match_without_parenthetical = _substring_after(strip_parenthetical)
match_without_city_prefix = _substring_after(strip_city_prefix)


CASCADE: tuple[Strategy, ...] = (
    match_exact,
    match_longest_substring,
    match_without_parenthetical,
    match_without_city_prefix,
)


def resolve_label(
    label: str | None, candidates: Sequence[Candidate], strategies: Sequence[Strategy] = CASCADE
) -> Candidate | None:
    label = (label or "").strip()
    if not label or not candidates:
        return None
    for strategy in strategies:
        hit = strategy(label, candidates)
        if hit is not None:
            return hit
    return None


def load_candidates(db: Session, source: LookupSource) -> list[Candidate]:
    spec = SOURCES[source]
    value_col = getattr(spec.model, spec.value_column)
    label_col = getattr(spec.model, spec.label_column)
    rows = db.execute(select(value_col, label_col).order_by(label_col.asc(), value_col.asc())).all()
    return [Candidate(value=str(v), label=str(lbl or "")) for v, lbl in rows]


def label_for_value(value: str | None, candidates: Sequence[Candidate]) -> str | None:
    """Reverse lookup used when displaying stored ids."""
    v = (value or "").strip()
    if not v:
        return None
    for c in candidates:
        if c.value == v:
            return c.label
    return None
