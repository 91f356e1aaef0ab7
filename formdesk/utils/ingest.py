"""Public form ingestion.

`save_submission` stores one submission with its responses:
- unknown field names are ignored
- "database" fields (and the `uni` field) are resolved label -> id through
  the lookup cascade; a miss keeps the raw label
- an unresolved, non-numeric `uni` value is stored as UNI_OTHER_VALUE
- entity_id comes from an entity-sourced field, else from the resolved
  university's mapping, else stays NULL (never organic)

Duplicate flags are not touched here; they are rebuilt by the rescan.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.core.lookup import (
    Candidate,
    LookupSource,
    label_for_value,
    load_candidates,
    parse_source,
    resolve_label,
)
from formdesk.db.models.form import Form
from formdesk.db.models.form_field import FormField
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.submission import FormSubmission
from formdesk.db.models.uni_mapping import UniMapping

logger = logging.getLogger("formdesk.ingest")

UNI_FIELD_NAME = "uni"


class CandidateCache:
    """Per-request cache of lookup tables."""

    def __init__(self, db: Session):
        self.db = db
        self._data: dict[LookupSource, list[Candidate]] = {}

    def get(self, source: LookupSource) -> list[Candidate]:
        if source not in self._data:
            self._data[source] = load_candidates(self.db, source)
        return self._data[source]


def field_source(field: FormField) -> LookupSource | None:
    if field.field_type == "database":
        return parse_source(field.options().get("source"))
    if field.field_name == UNI_FIELD_NAME:
        return LookupSource.UNI_MAPPING
    return None


def normalize_value(raw: Any) -> str | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, (list, tuple)):
        return ", ".join(str(x) for x in raw if x is not None)
    if isinstance(raw, dict):
        return json.dumps(raw, ensure_ascii=False)
    return str(raw)


def missing_required(fields: list[FormField], payload: Mapping[str, Any]) -> list[str]:
    out = []
    for f in fields:
        if not f.is_required:
            continue
        v = normalize_value(payload.get(f.field_name))
        if not (v or "").strip():
            out.append(f.field_name)
    return out


def display_label(field: FormField, value: str | None, cache: CandidateCache) -> str | None:
    """Human label for a stored response (ids of database fields -> names)."""
    source = field_source(field)
    if source is None:
        return value
    return label_for_value(value, cache.get(source)) or value


_MAX_ID = 2**31 - 1


def as_row_id(v: str) -> int | None:
    """ASCII positive integer that fits an INT primary key, else None."""
    if not (v.isascii() and v.isdigit()) or len(v) > 10:
        return None
    n = int(v)
    return n if 0 < n <= _MAX_ID else None


def save_submission(
    db: Session,
    form: Form,
    payload: Mapping[str, Any],
    *,
    timestamp: datetime | None = None,
) -> FormSubmission:
    """Add the submission to the session and flush (caller commits)."""
    by_name = {f.field_name: f for f in form.fields}
    cache = CandidateCache(db)

    sub = FormSubmission(form_id=form.id, duplicated=False, timestamp=timestamp or datetime.utcnow())
    db.add(sub)
    db.flush()

    entity_from_field: int | None = None
    uni_id: int | None = None

    for name, raw in payload.items():
        field = by_name.get(name)
        if field is None:
            continue
        value = normalize_value(raw)
        source = field_source(field)

        if source is not None and (value or "").strip():
            label = value.strip()
            if source is LookupSource.UNI_MAPPING and as_row_id(label) is not None:
                # already a uni_id
                value = label
            else:
                hit = resolve_label(label, cache.get(source))
                if hit is not None:
                    value = hit.value
                    if source is LookupSource.ENTITY and entity_from_field is None:
                        entity_from_field = int(hit.value)
                else:
                    logger.debug("lookup miss form=%s field=%s source=%s label=%r", form.id, name, source.value, label)

        if name == UNI_FIELD_NAME and (value or "").strip():
            v = value.strip()
            uni_id = as_row_id(v)
            if uni_id is not None:
                value = v
            else:
                value = settings.UNI_OTHER_VALUE

        db.add(FormResponse(submission_id=sub.id, field_id=field.id, value=value))

    entity_id = entity_from_field
    if entity_id is None and uni_id is not None:
        mapping = db.get(UniMapping, uni_id)
        if mapping is not None and mapping.entity_id:
            entity_id = mapping.entity_id
    sub.entity_id = entity_id

    db.flush()
    logger.info("submission saved form=%s id=%s entity=%s", form.id, sub.id, entity_id)
    return sub
