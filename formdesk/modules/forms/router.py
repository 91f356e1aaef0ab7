from __future__ import annotations

import json
import logging
import time

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.lookup import SOURCES, LookupSource, load_candidates, parse_source
from formdesk.core.rbac import can_manage_forms, require
from formdesk.db.models.duplicate_setting import DuplicateSetting
from formdesk.db.models.form import Form
from formdesk.db.models.form_field import FIELD_TYPES, FormField
from formdesk.db.models.form_response import FormResponse
from formdesk.db.models.submission import FormSubmission
from formdesk.db.session import get_db
from formdesk.modules.forms.schemas import (
    DuplicateSettingsIn,
    FieldIn,
    FieldReorderIn,
    FieldUpdate,
    FormIn,
    FormUpdate,
)
from formdesk.utils.audit import add_audit_log
from formdesk.utils.duplicates import analyze_duplicates, apply_duplicate_flags, configured_field_ids, ordered_fields
from formdesk.utils.importer import MAX_IMPORT_BYTES, CsvImportError, import_rows, read_csv
from formdesk.utils.submissions import delete_submissions
from formdesk.utils.tx import commit_or_500, rollback_500

logger = logging.getLogger("formdesk.forms")

router = APIRouter(prefix="/forms", tags=["forms"])


def field_out(f: FormField) -> dict:
    return {
        "id": f.id,
        "form_id": f.form_id,
        "field_name": f.field_name,
        "field_label": f.field_label,
        "field_type": f.field_type,
        "field_options": f.options(),
        "is_required": bool(f.is_required),
        "sort_order": f.sort_order,
    }


def form_out(f: Form, with_fields: bool = False) -> dict:
    out = {"id": f.id, "name": f.name, "code": f.code, "created_at": f.created_at}
    if with_fields:
        out["fields"] = [field_out(x) for x in ordered_fields(f)]
    return out


def get_form_or_404(db: Session, form_id: int) -> Form:
    f = db.get(Form, form_id)
    require(f is not None, "Form not found", 404)
    return f


def _check_field(field_type: str, options: dict | None) -> None:
    require(field_type in FIELD_TYPES, f"Unknown field type: {field_type}", 400)
    if field_type == "database":
        require(
            parse_source((options or {}).get("source")) is not None,
            f"database fields need a source: {', '.join(s.value for s in LookupSource)}",
            400,
        )


def _field_from_in(form_id: int, data: FieldIn, sort_order: int) -> FormField:
    options = data.field_options or {}
    return FormField(
        form_id=form_id,
        field_name=data.field_name.strip(),
        field_label=(data.field_label or data.field_name).strip(),
        field_type=data.field_type,
        field_options=json.dumps(options) if options else None,
        is_required=data.is_required,
        sort_order=data.sort_order if data.sort_order is not None else sort_order,
    )


# ---- Lookup sources (used by the admin form builder) ----


@router.get("/datasources")
def datasources(user=Depends(get_current_user)):
    return {
        "sources": [
            {"source": s.value, "value_key": spec.value_column, "label_key": spec.label_column}
            for s, spec in SOURCES.items()
        ]
    }


@router.get("/datasources/{source}")
def datasource_options(source: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    src = parse_source(source)
    require(src is not None, "Unknown data source", 404)
    return {
        "source": src.value,
        "options": [{"value": c.value, "label": c.label} for c in load_candidates(db, src)],
    }


# ---- Public form definition (renderers fetch this before submitting) ----


@router.get("/by-code/{code}")
def get_form_by_code(code: str, db: Session = Depends(get_db)):
    f = db.query(Form).filter(Form.code == code).first()
    require(f is not None, "Form not found", 404)
    return {
        "form": {"id": f.id, "code": f.code, "name": f.name},
        "fields": [
            {
                "field_name": x.field_name,
                "field_label": x.field_label,
                "field_type": x.field_type,
                "field_options": x.options(),
                "is_required": bool(x.is_required),
                "sort_order": x.sort_order,
            }
            for x in ordered_fields(f)
        ],
    }


# ---- Forms ----


@router.get("")
def list_forms(db: Session = Depends(get_db), user=Depends(get_current_user)):
    counts = dict(
        db.query(FormSubmission.form_id, func.count(FormSubmission.id)).group_by(FormSubmission.form_id).all()
    )
    forms = db.query(Form).order_by(Form.id.desc()).all()
    return {"forms": [{**form_out(f), "submission_count": int(counts.get(f.id, 0))} for f in forms]}


@router.post("", status_code=201)
def create_form(data: FormIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    code = data.code.strip()
    require(db.query(Form).filter(Form.code == code).first() is None, "Form code already exists", 409)

    names = [x.field_name.strip() for x in data.fields]
    require(len(names) == len(set(names)), "Field names must be unique within a form", 400)
    for fd in data.fields:
        _check_field(fd.field_type, fd.field_options)

    f = Form(name=data.name.strip(), code=code)
    db.add(f)
    db.flush()
    for i, fd in enumerate(data.fields):
        db.add(_field_from_in(f.id, fd, i))

    add_audit_log(db, actor_id=user.id, action="create", entity="form", entity_id=f.id, after={"name": f.name, "code": f.code})
    commit_or_500(db, logger, "create form")
    db.refresh(f)
    return {"form": form_out(f, with_fields=True)}


@router.get("/{form_id}")
def get_form(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    return {"form": form_out(get_form_or_404(db, form_id), with_fields=True)}


@router.put("/{form_id}")
def update_form(form_id: int, data: FormUpdate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    before = {"name": f.name, "code": f.code}

    if data.name is not None:
        require(bool(data.name.strip()), "Name cannot be empty", 400)
        f.name = data.name.strip()
    if data.code is not None:
        code = data.code.strip()
        require(bool(code), "Code cannot be empty", 400)
        clash = db.query(Form).filter(Form.code == code, Form.id != f.id).first()
        require(clash is None, "Form code already exists", 409)
        f.code = code

    add_audit_log(db, actor_id=user.id, action="update", entity="form", entity_id=f.id, before=before, after={"name": f.name, "code": f.code})
    commit_or_500(db, logger, "update form")
    return {"form": form_out(f)}


@router.delete("/{form_id}")
def delete_form(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    before = {"name": f.name, "code": f.code}

    try:
        ids = [r[0] for r in db.query(FormSubmission.id).filter(FormSubmission.form_id == f.id).all()]
        deleted = delete_submissions(db, ids)
        db.query(DuplicateSetting).filter(DuplicateSetting.form_id == f.id).delete(synchronize_session=False)
        add_audit_log(db, actor_id=user.id, action="delete", entity="form", entity_id=f.id, before=before, comment=f"{deleted} submissions")
        db.delete(f)
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "delete form")
    return {"success": True, "deleted_submissions": deleted}


@router.post("/{form_id}/duplicate", status_code=201)
def duplicate_form(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Copy a form and its fields (not its submissions)."""
    require(can_manage_forms(user))
    src = get_form_or_404(db, form_id)

    copy = Form(name=f"{src.name} (Copy)", code=f"{src.code}_copy_{int(time.time() * 1000)}")
    db.add(copy)
    db.flush()
    fields = ordered_fields(src)
    for x in fields:
        db.add(
            FormField(
                form_id=copy.id,
                field_name=x.field_name,
                field_label=x.field_label,
                field_type=x.field_type,
                field_options=x.field_options,
                is_required=x.is_required,
                sort_order=x.sort_order,
            )
        )

    add_audit_log(db, actor_id=user.id, action="duplicate", entity="form", entity_id=copy.id, after={"source_form_id": src.id})
    commit_or_500(db, logger, "duplicate form")
    db.refresh(copy)
    return {"form": form_out(copy, with_fields=True), "fields_copied": len(fields)}


# ---- Fields ----


@router.get("/{form_id}/fields")
def list_fields(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    f = get_form_or_404(db, form_id)
    return {"fields": [field_out(x) for x in ordered_fields(f)]}


@router.post("/{form_id}/fields", status_code=201)
def add_field(form_id: int, data: FieldIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    name = data.field_name.strip()
    require(all(x.field_name != name for x in f.fields), "Field name already exists in this form", 409)
    _check_field(data.field_type, data.field_options)

    next_order = max((x.sort_order or 0 for x in f.fields), default=-1) + 1
    field = _field_from_in(f.id, data, next_order)
    db.add(field)
    db.flush()
    add_audit_log(db, actor_id=user.id, action="create", entity="form_field", entity_id=field.id, after=field_out(field))
    commit_or_500(db, logger, "add field")
    db.refresh(field)
    return {"field": field_out(field)}


def _get_field_or_404(f: Form, field_id: int) -> FormField:
    field = next((x for x in f.fields if x.id == field_id), None)
    require(field is not None, "Field not found in this form", 404)
    return field


@router.put("/{form_id}/fields/reorder")
def reorder_fields(form_id: int, data: FieldReorderIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    own = {x.id: x for x in f.fields}
    foreign = sorted({o.id for o in data.field_orders} - set(own))
    require(not foreign, f"Fields do not belong to this form: {foreign}", 400)

    before = {x.id: x.sort_order for x in f.fields}
    for o in data.field_orders:
        own[o.id].sort_order = o.sort_order
    add_audit_log(
        db,
        actor_id=user.id,
        action="reorder",
        entity="form",
        entity_id=f.id,
        before=before,
        after={x.id: x.sort_order for x in f.fields},
    )
    commit_or_500(db, logger, "reorder fields")
    db.refresh(f)
    return {"fields": [field_out(x) for x in ordered_fields(f)]}


@router.put("/{form_id}/fields/{field_id}")
def update_field(
    form_id: int,
    field_id: int,
    data: FieldUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    field = _get_field_or_404(f, field_id)

    name = data.field_name.strip() if data.field_name is not None else None
    if name is not None:
        require(bool(name), "Field name cannot be empty", 400)
        require(
            all(x.field_name != name for x in f.fields if x.id != field.id),
            "Field name already exists in this form",
            409,
        )
    field_type = data.field_type if data.field_type is not None else field.field_type
    options = data.field_options if data.field_options is not None else field.options()
    _check_field(field_type, options)

    before = field_out(field)
    if name is not None:
        field.field_name = name
    if data.field_label is not None:
        field.field_label = data.field_label.strip() or field.field_name
    field.field_type = field_type
    if data.field_options is not None:
        field.field_options = json.dumps(data.field_options) if data.field_options else None
    if data.is_required is not None:
        field.is_required = data.is_required
    if data.sort_order is not None:
        field.sort_order = data.sort_order

    add_audit_log(db, actor_id=user.id, action="update", entity="form_field", entity_id=field.id, before=before, after=field_out(field))
    commit_or_500(db, logger, "update field")
    return {"field": field_out(field)}


@router.delete("/{form_id}/fields/{field_id}")
def delete_field(form_id: int, field_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Drop a field with its stored answers and its duplicate-key setting."""
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    field = _get_field_or_404(f, field_id)
    before = field_out(field)

    try:
        responses = (
            db.query(FormResponse).filter(FormResponse.field_id == field.id).delete(synchronize_session=False)
        )
        db.query(DuplicateSetting).filter(DuplicateSetting.field_id == field.id).delete(synchronize_session=False)
        add_audit_log(
            db,
            actor_id=user.id,
            action="delete",
            entity="form_field",
            entity_id=field.id,
            before=before,
            comment=f"{responses} responses",
        )
        f.fields.remove(field)
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "delete field")
    return {"success": True, "deleted_responses": responses}


# ---- Duplicate detection ----


@router.get("/{form_id}/duplicate-settings")
def get_duplicate_settings(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    get_form_or_404(db, form_id)
    return {"field_ids": sorted(configured_field_ids(db, form_id))}


@router.put("/{form_id}/duplicate-settings")
def put_duplicate_settings(
    form_id: int,
    data: DuplicateSettingsIn,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)

    own = {x.id for x in f.fields}
    wanted = sorted(set(data.field_ids))
    foreign = [i for i in wanted if i not in own]
    require(not foreign, f"Fields do not belong to this form: {foreign}", 400)

    before = sorted(configured_field_ids(db, form_id))
    try:
        db.query(DuplicateSetting).filter(DuplicateSetting.form_id == form_id).delete(synchronize_session=False)
        for fid in wanted:
            db.add(DuplicateSetting(form_id=form_id, field_id=fid))
        add_audit_log(db, actor_id=user.id, action="update", entity="duplicate_settings", entity_id=form_id, before=before, after=wanted)
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "save duplicate settings")
    return {"success": True, "field_ids": wanted}


@router.post("/{form_id}/duplicates/recheck")
def recheck_duplicates(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    try:
        result = apply_duplicate_flags(db, f)
        add_audit_log(db, actor_id=user.id, action="recheck", entity="form", entity_id=f.id, after=result.as_dict())
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "recheck duplicates")
    return {"success": True, **result.as_dict()}


@router.post("/{form_id}/import")
def import_submissions(
    form_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Load submissions from a CSV export, then rescan the form's duplicates."""
    require(can_manage_forms(user))
    f = get_form_or_404(db, form_id)
    try:
        headers, rows = read_csv(file.file.read(MAX_IMPORT_BYTES + 1))
    except CsvImportError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    try:
        result = import_rows(db, f, headers, rows)
        recheck = apply_duplicate_flags(db, f)
        add_audit_log(
            db,
            actor_id=user.id,
            action="import",
            entity="form",
            entity_id=f.id,
            after={**result.as_dict(), "filename": file.filename},
        )
        db.commit()
    except CsvImportError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    except SQLAlchemyError:
        raise rollback_500(db, logger, "import submissions")
    return {"success": True, **result.as_dict(), "recheck": recheck.as_dict()}


@router.get("/{form_id}/duplicates/analysis")
def duplicates_analysis(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_forms(user))
    return analyze_duplicates(db, get_form_or_404(db, form_id))
