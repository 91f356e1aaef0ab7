from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core import dedup
from formdesk.core.rbac import can_manage_forms, require
from formdesk.db.models.form import Form
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.submission import FormSubmission
from formdesk.db.session import get_db
from formdesk.modules.forms.router import get_form_or_404
from formdesk.modules.submissions.schemas import (
    UTM_FIELD_NAMES,
    BulkDeleteIn,
    BulkEditUtmIn,
    EditFieldIn,
    MoveIn,
)
from formdesk.utils.audit import add_audit_log
from formdesk.utils.duplicates import apply_duplicate_flags, ordered_fields
from formdesk.utils.ingest import CandidateCache, display_label, missing_required, save_submission
from formdesk.utils.submissions import (
    delete_submissions,
    entity_names,
    responses_by_submission,
    submission_out,
)
from formdesk.utils.tx import rollback_500

logger = logging.getLogger("formdesk.submissions")

router = APIRouter(prefix="/forms", tags=["submissions"])

MAX_PAGE_SIZE = 500


def _serialize(db: Session, form: Form, subs: list[FormSubmission]) -> list[dict]:
    fields = ordered_fields(form)
    values = responses_by_submission(db, [s.id for s in subs])
    entities = entity_names(db, [s.entity_id for s in subs])
    cache = CandidateCache(db)
    return [submission_out(s, fields, values.get(s.id, {}), entities, cache) for s in subs]


def _own_submission_ids(db: Session, form_id: int, ids: list[int]) -> list[int]:
    rows = (
        db.query(FormSubmission.id)
        .filter(FormSubmission.form_id == form_id, FormSubmission.id.in_(set(ids)))
        .all()
    )
    return sorted(r[0] for r in rows)


def _upsert_response(db: Session, submission_id: int, field_id: int, value: str | None) -> None:
    r = (
        db.query(FormResponse)
        .filter(FormResponse.submission_id == submission_id, FormResponse.field_id == field_id)
        .first()
    )
    if r is None:
        db.add(FormResponse(submission_id=submission_id, field_id=field_id, value=value))
    else:
        r.value = value


# ---- Public ingestion ----


@router.post("/by-code/{code}/submit", status_code=201)
def submit(code: str, payload: dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    form = db.query(Form).filter(Form.code == code).first()
    require(form is not None, "Form not found", 404)

    missing = missing_required(ordered_fields(form), payload)
    require(not missing, f"Required fields missing: {', '.join(missing)}", 400)

    try:
        sub = save_submission(db, form, payload)
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "save submission")
    return {"success": True, "submission_id": sub.id, "entity_id": sub.entity_id}


# ---- Listing ----


@router.get("/{form_id}/submissions")
def list_submissions(
    form_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    include_duplicates: bool = True,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    form = get_form_or_404(db, form_id)
    q = db.query(FormSubmission).filter(FormSubmission.form_id == form.id)
    if not include_duplicates:
        q = q.filter(FormSubmission.duplicated == False)  # noqa: E712
    total = q.count()
    subs = (
        q.order_by(FormSubmission.timestamp.desc(), FormSubmission.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "form": {"id": form.id, "name": form.name, "code": form.code},
        "submissions": _serialize(db, form, subs),
        "pagination": {"page": page, "page_size": page_size, "total": total},
    }


@router.get("/{form_id}/submissions/clean")
def clean_submissions(
    form_id: int,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Latest submission per form-code / email / phone (display only, flags untouched)."""
    form = get_form_or_404(db, form_id)
    key_ids = {f.id: f.field_name for f in form.fields if f.field_name in dedup.CLEAN_KEY_FIELD_NAMES}

    subs = db.query(FormSubmission).filter(FormSubmission.form_id == form.id).all()
    by_name: dict[int, dict[str, str | None]] = {s.id: {} for s in subs}
    if key_ids and subs:
        rows = (
            db.query(FormResponse.submission_id, FormResponse.field_id, FormResponse.value)
            .join(FormSubmission, FormSubmission.id == FormResponse.submission_id)
            .filter(FormSubmission.form_id == form.id, FormResponse.field_id.in_(list(key_ids)))
            .all()
        )
        for sid, fid, value in rows:
            by_name[sid][key_ids[fid]] = value

    kept = dedup.latest_per_key(subs, lambda s: dedup.presentation_key(by_name[s.id]))
    window = kept[(page - 1) * page_size : page * page_size]
    return {
        "form": {"id": form.id, "name": form.name, "code": form.code},
        "submissions": _serialize(db, form, window),
        "pagination": {"page": page, "page_size": page_size, "total": len(kept)},
        "total_raw": len(subs),
    }


# ---- Bulk operations (admin) ----


@router.post("/{form_id}/submissions/bulk-delete")
def bulk_delete(form_id: int, data: BulkDeleteIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    form = get_form_or_404(db, form_id)
    ids = _own_submission_ids(db, form.id, data.submission_ids)
    require(bool(ids), "No matching submissions in this form", 400)

    try:
        deleted = delete_submissions(db, ids)
        add_audit_log(db, actor_id=user.id, action="bulk_delete", entity="form", entity_id=form.id, before={"submission_ids": ids})
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "delete submissions")
    logger.info("bulk delete form=%s deleted=%s by=%s", form.id, deleted, user.id)
    return {"success": True, "deleted": deleted, "requested": len(data.submission_ids)}


@router.post("/{form_id}/submissions/move")
def move_submissions(form_id: int, data: MoveIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Copy submissions into another form (responses matched by field name) and delete the originals."""
    require(can_manage_forms(user))
    source = get_form_or_404(db, form_id)
    require(data.target_form_id != source.id, "Target form must differ from the source form", 400)
    target = db.get(Form, data.target_form_id)
    require(target is not None, "Target form not found", 404)

    ids = _own_submission_ids(db, source.id, data.submission_ids)
    require(bool(ids), "No matching submissions in this form", 400)

    source_names = {f.id: f.field_name for f in source.fields}
    target_ids = {f.field_name: f.id for f in target.fields}

    try:
        originals = db.query(FormSubmission).filter(FormSubmission.id.in_(ids)).order_by(FormSubmission.id).all()
        values = responses_by_submission(db, ids)
        mapping: dict[int, int] = {}
        for s in originals:
            copy = FormSubmission(form_id=target.id, timestamp=s.timestamp, entity_id=s.entity_id, duplicated=False)
            db.add(copy)
            db.flush()
            mapping[s.id] = copy.id
            for fid, value in values.get(s.id, {}).items():
                target_fid = target_ids.get(source_names.get(fid, ""))
                if target_fid is not None:
                    db.add(FormResponse(submission_id=copy.id, field_id=target_fid, value=value))
        db.flush()
        delete_submissions(db, ids)

        target_result = apply_duplicate_flags(db, target)
        apply_duplicate_flags(db, source)

        add_audit_log(
            db,
            actor_id=user.id,
            action="move",
            entity="form",
            entity_id=source.id,
            after={"target_form_id": target.id, "moved": mapping},
        )
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "move submissions")

    logger.info("moved %s submissions form=%s -> form=%s", len(mapping), source.id, target.id)
    return {
        "success": True,
        "moved": len(mapping),
        "skipped": len(data.submission_ids) - len(mapping),
        "new_ids": mapping,
        "target_recheck": target_result.as_dict(),
    }


@router.post("/{form_id}/submissions/bulk-edit-utm")
def bulk_edit_utm(form_id: int, data: BulkEditUtmIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    form = get_form_or_404(db, form_id)

    updates = {k: v for k, v in data.updates.items() if k in UTM_FIELD_NAMES}
    require(bool(updates), f"At least one of {', '.join(UTM_FIELD_NAMES)} is required", 400)

    field_ids = {f.field_name: f.id for f in form.fields if f.field_name in updates}
    require(bool(field_ids), "No matching UTM fields found in this form", 400)

    ids = _own_submission_ids(db, form.id, data.submission_ids)
    require(bool(ids), "No matching submissions in this form", 400)

    try:
        for sid in ids:
            for name, fid in field_ids.items():
                _upsert_response(db, sid, fid, updates[name])
        add_audit_log(
            db,
            actor_id=user.id,
            action="bulk_edit_utm",
            entity="form",
            entity_id=form.id,
            after={"submission_ids": ids, "updates": {k: updates[k] for k in field_ids}},
        )
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "bulk edit UTM")
    return {"success": True, "updated": len(ids), "fields": sorted(field_ids)}


@router.put("/{form_id}/submissions/{submission_id}/edit-field")
def edit_field(
    form_id: int,
    submission_id: int,
    data: EditFieldIn,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_manage_forms(user))
    form = get_form_or_404(db, form_id)
    field = next((f for f in form.fields if f.field_name == data.field_name), None)
    require(field is not None, "Field not found in this form", 404)
    sub = db.get(FormSubmission, submission_id)
    require(sub is not None and sub.form_id == form.id, "Submission not found for this form", 404)

    before = (
        db.query(FormResponse.value)
        .filter(FormResponse.submission_id == sub.id, FormResponse.field_id == field.id)
        .scalar()
    )
    try:
        _upsert_response(db, sub.id, field.id, data.value)
        add_audit_log(
            db,
            actor_id=user.id,
            action="edit_field",
            entity="submission",
            entity_id=sub.id,
            before={field.field_name: before},
            after={field.field_name: data.value},
        )
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "edit field")

    return {
        "success": True,
        "field_name": field.field_name,
        "value": data.value,
        "value_label": display_label(field, data.value, CandidateCache(db)),
    }
