"""Duplicate-key resolution for form submissions.

Everything here is pure: callers load submissions + field values from the
database, this module decides which submissions share a duplicate key and
which member of each group is canonical. Persisting the result is the job
of `formdesk.utils.duplicates`.

Rules:
1) Key fields are the form's configured duplicate settings, or the fields
   named "phone" and "email" when nothing is configured.
2) key = "|".join(trim(value) for each key field); missing value => "".
3) A key whose parts are all empty never groups (never a duplicate).
4) Within a group the most recent submission (timestamp, then id) wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Protocol, Sequence, TypeVar


KEY_SEPARATOR = "|"
FALLBACK_FIELD_NAMES: tuple[str, ...] = ("phone", "email")

# Presentation-only ("clean data") dedup: first non-blank wins.
CLEAN_KEY_FIELD_NAMES: tuple[str, ...] = ("form-code", "email", "phone")


class FieldLike(Protocol):
    id: int
    field_name: str


@dataclass(frozen=True, slots=True)
class KeyField:
    id: int
    field_name: str


@dataclass(frozen=True, slots=True)
class SubmissionValues:
    """One submission as seen by the resolver."""

    id: int
    timestamp: datetime
    # field_id -> raw response value (absent => no response)
    values: Mapping[int, str | None] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DuplicateVerdict:
    is_duplicate: bool
    group_key: str | None


@dataclass(frozen=True, slots=True)
class DuplicateGroup:
    key: str
    # most recent first; members[0] is canonical
    members: tuple[SubmissionValues, ...]


def select_key_fields(
    fields: Sequence[FieldLike], configured_field_ids: Iterable[int]
) -> tuple[list[KeyField], bool]:
    """Pick the fields that make up the duplicate key.

    `fields` must be the form's own fields in display order. Configured ids
    that don't belong to the form are ignored. Returns (key_fields,
    settings_used) where settings_used is False for the phone/email fallback.
    """
    wanted = set(configured_field_ids)
    configured = [KeyField(f.id, f.field_name) for f in fields if f.id in wanted]
    if configured:
        return configured, True

    by_name: dict[str, FieldLike] = {}
    for f in fields:
        by_name.setdefault(f.field_name, f)
    fallback = [KeyField(by_name[n].id, n) for n in FALLBACK_FIELD_NAMES if n in by_name]
    return fallback, False


def compute_key(values: Mapping[int, str | None], key_fields: Sequence[KeyField]) -> str | None:
    if not key_fields:
        return None
    parts = [str(values.get(f.id) or "").strip() for f in key_fields]
    if all(p == "" for p in parts):
        return None
    return KEY_SEPARATOR.join(parts)


def _recency(s: SubmissionValues) -> tuple[datetime, int]:
    return (s.timestamp, s.id)


def _group(
    submissions: Iterable[SubmissionValues], key_fields: Sequence[KeyField]
) -> tuple[dict[str, list[SubmissionValues]], dict[int, str | None]]:
    groups: dict[str, list[SubmissionValues]] = {}
    keys: dict[int, str | None] = {}
    for s in submissions:
        key = compute_key(s.values, key_fields)
        keys[s.id] = key
        if key is None:
            continue
        groups.setdefault(key, []).append(s)
    for members in groups.values():
        members.sort(key=_recency, reverse=True)
    return groups, keys


def resolve(
    submissions: Iterable[SubmissionValues], key_fields: Sequence[KeyField]
) -> dict[int, DuplicateVerdict]:
    """Map every submission id to its verdict."""
    groups, keys = _group(submissions, key_fields)

    duplicate_ids: set[int] = set()
    for members in groups.values():
        duplicate_ids.update(s.id for s in members[1:])

    return {
        sid: DuplicateVerdict(is_duplicate=sid in duplicate_ids, group_key=key)
        for sid, key in keys.items()
    }


def find_duplicate_groups(
    submissions: Iterable[SubmissionValues], key_fields: Sequence[KeyField]
) -> list[DuplicateGroup]:
    """Groups with more than one member, largest first (read-only analysis)."""
    groups, _ = _group(submissions, key_fields)
    out = [DuplicateGroup(key=k, members=tuple(v)) for k, v in groups.items() if len(v) > 1]
    out.sort(key=lambda g: (-len(g.members), g.key))
    return out


# ---- Presentation-only dedup ("clean submissions" view) ----


def presentation_key(values_by_name: Mapping[str, str | None]) -> str | None:
    """Narrow key for the clean-data view; never used for the persisted flag."""
    for name in CLEAN_KEY_FIELD_NAMES:
        v = str(values_by_name.get(name) or "").strip()
        if v:
            return f"{name}:{v}"
    return None


class _Timed(Protocol):
    id: int
    timestamp: datetime


T = TypeVar("T", bound=_Timed)


def latest_per_key(items: Iterable[T], key_of: Callable[[T], str | None]) -> list[T]:
    """Keep the most recent item per key (items without a key are all kept).

    Result is ordered most recent first.
    """
    ordered = sorted(items, key=lambda s: (s.timestamp, s.id), reverse=True)
    seen: set[str] = set()
    out: list[T] = []
    for item in ordered:
        key = key_of(item)
        if key is not None:
            if key in seen:
                continue
            seen.add(key)
        out.append(item)
    return out
