from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session

from formdesk.db.models.allocation_request import AllocationRequest
from formdesk.db.models.entity import Entity
from formdesk.db.models.form_field import FormField
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.submission import FormSubmission
from formdesk.utils.ingest import CandidateCache, display_label


def delete_submissions(db: Session, ids: Iterable[int]) -> int:
    """Delete submissions with their responses and allocation requests (no commit).

    Child rows are removed explicitly; not every backend enforces ON DELETE CASCADE.
    """
    ids = sorted({int(i) for i in ids})
    if not ids:
        return 0
    db.query(AllocationRequest).filter(AllocationRequest.submission_id.in_(ids)).delete(synchronize_session=False)
    db.query(FormResponse).filter(FormResponse.submission_id.in_(ids)).delete(synchronize_session=False)
    n = db.query(FormSubmission).filter(FormSubmission.id.in_(ids)).delete(synchronize_session=False)
    db.expire_all()
    return int(n)


def responses_by_submission(db: Session, submission_ids: list[int]) -> dict[int, dict[int, str | None]]:
    out: dict[int, dict[int, str | None]] = {sid: {} for sid in submission_ids}
    if not submission_ids:
        return out
    rows = (
        db.query(FormResponse.submission_id, FormResponse.field_id, FormResponse.value)
        .filter(FormResponse.submission_id.in_(submission_ids))
        .all()
    )
    for sid, fid, value in rows:
        out.setdefault(sid, {})[fid] = value
    return out


def entity_names(db: Session, entity_ids: Iterable[int | None]) -> dict[int, str]:
    ids = {int(i) for i in entity_ids if i}
    if not ids:
        return {}
    return dict(db.query(Entity.entity_id, Entity.name).filter(Entity.entity_id.in_(ids)).all())


def submission_out(
    s: FormSubmission,
    fields: list[FormField],
    values: dict[int, str | None],
    entities: dict[int, str],
    cache: CandidateCache | None = None,
) -> dict:
    responses = {}
    for f in fields:
        if f.id not in values:
            continue
        v = values[f.id]
        item = {"field_id": f.id, "value": v}
        if cache is not None:
            item["label"] = display_label(f, v, cache)
        responses[f.field_name] = item
    return {
        "id": s.id,
        "form_id": s.form_id,
        "timestamp": s.timestamp,
        "entity_id": s.entity_id,
        "entity_name": entities.get(s.entity_id) if s.entity_id else None,
        "duplicated": bool(s.duplicated),
        "responses": responses,
    }
