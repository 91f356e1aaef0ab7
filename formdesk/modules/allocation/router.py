from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.allocation import (
    get_transition,
    has_pending_request,
    is_unallocated,
    known_actions,
    organic_entity_id,
    unallocated_clause,
)
from formdesk.core.rbac import (
    can_allocate,
    can_request_allocation,
    can_view_allocation_requests,
    is_admin,
    require,
)
from formdesk.db.models.allocation_request import AllocationRequest, AllocationStatus
from formdesk.db.models.entity import Entity
from formdesk.db.models.form import Form
from formdesk.db.models.submission import FormSubmission
from formdesk.db.session import get_db
from formdesk.modules.allocation.schemas import AllocateEntityIn, AllocationDecisionIn, AllocationRequestIn
from formdesk.modules.forms.router import get_form_or_404
from formdesk.utils.audit import add_audit_log
from formdesk.utils.duplicates import ordered_fields
from formdesk.utils.ingest import CandidateCache
from formdesk.utils.notify import notify, notify_admins
from formdesk.utils.submissions import entity_names, responses_by_submission, submission_out
from formdesk.utils.tx import rollback_500

logger = logging.getLogger("formdesk.allocation")

router = APIRouter(tags=["allocation"])


def _request_out(r: AllocationRequest) -> dict:
    return {
        "id": r.id,
        "submission_id": r.submission_id,
        "requested_by": r.requested_by,
        "requester_name": r.requester.name if r.requester else None,
        "requested_entity_id": r.requested_entity_id,
        "requested_entity_name": r.entity.name if r.entity else None,
        "status": r.status.value,
        "admin_notes": r.admin_notes,
        "created_at": r.created_at,
        "updated_at": r.updated_at,
    }


def _get_request_or_404(db: Session, request_id: int) -> AllocationRequest:
    r = db.get(AllocationRequest, request_id)
    require(r is not None, "Allocation request not found", 404)
    return r


# ---- Manual allocation queue ----


@router.get("/forms/{form_id}/submissions/manual-allocate")
def manual_allocate_queue(form_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    """Unallocated (NULL / 0 / organic) submissions of a form, newest first."""
    form = get_form_or_404(db, form_id)
    organic_id = organic_entity_id(db)
    subs = (
        db.query(FormSubmission)
        .filter(FormSubmission.form_id == form.id, unallocated_clause(organic_id))
        .order_by(FormSubmission.timestamp.desc(), FormSubmission.id.desc())
        .all()
    )
    fields = ordered_fields(form)
    values = responses_by_submission(db, [s.id for s in subs])
    entities = entity_names(db, [s.entity_id for s in subs])
    cache = CandidateCache(db)

    pending = set()
    if subs:
        pending = {
            r[0]
            for r in db.query(AllocationRequest.submission_id)
            .filter(
                AllocationRequest.submission_id.in_([s.id for s in subs]),
                AllocationRequest.status == AllocationStatus.PENDING,
            )
            .all()
        }

    return {
        "form_id": form.id,
        "organic_entity_id": organic_id,
        "submissions": [
            {**submission_out(s, fields, values.get(s.id, {}), entities, cache), "has_pending_request": s.id in pending}
            for s in subs
        ],
    }


@router.put("/forms/{form_id}/submissions/{submission_id}/allocate-entity")
def allocate_entity(
    form_id: int,
    submission_id: int,
    data: AllocateEntityIn,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_allocate(user))
    form = get_form_or_404(db, form_id)
    sub = db.get(FormSubmission, submission_id)
    require(sub is not None and sub.form_id == form.id, "Submission not found for this form", 404)
    entity = db.get(Entity, data.entity_id)
    require(entity is not None, "Entity not found", 404)

    before = sub.entity_id
    try:
        sub.entity_id = entity.entity_id
        add_audit_log(
            db,
            actor_id=user.id,
            action="allocate",
            entity="submission",
            entity_id=sub.id,
            before={"entity_id": before},
            after={"entity_id": entity.entity_id},
        )
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "allocate entity")

    logger.info("submission %s allocated to entity %s by %s", sub.id, entity.entity_id, user.id)
    return {"success": True, "submission_id": sub.id, "entity_id": entity.entity_id, "entity_name": entity.name}


# ---- Allocation requests ----


@router.get("/allocation-requests")
def list_requests(
    status: str | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_view_allocation_requests(user))
    q = db.query(AllocationRequest)
    if not is_admin(user):
        q = q.filter(AllocationRequest.requested_by == user.id)
    if status:
        try:
            q = q.filter(AllocationRequest.status == AllocationStatus(status))
        except ValueError:
            require(False, f"Unknown status: {status}", 400)
    total = q.count()
    rows = (
        q.order_by(AllocationRequest.created_at.desc(), AllocationRequest.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "requests": [_request_out(r) for r in rows],
        "pagination": {"page": page, "page_size": page_size, "total": total},
    }


@router.post("/allocation-requests", status_code=201)
def create_request(data: AllocationRequestIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_request_allocation(user), "Only leads can request allocations")

    sub = db.get(FormSubmission, data.submission_id)
    require(sub is not None, "Submission not found", 404)
    entity = db.get(Entity, data.requested_entity_id)
    require(entity is not None, "Entity not found", 404)
    require(sub.entity_id != entity.entity_id, "Submission is already allocated to this entity", 400)
    require(not has_pending_request(db, sub.id), "A pending request already exists for this submission", 409)

    verb = "allocate" if is_unallocated(sub.entity_id, organic_entity_id(db)) else "reallocate"
    form = db.get(Form, sub.form_id)
    try:
        r = AllocationRequest(
            submission_id=sub.id,
            requested_by=user.id,
            requested_entity_id=entity.entity_id,
            status=AllocationStatus.PENDING,
            pending_submission_id=sub.id,
        )
        db.add(r)
        db.flush()
        notify_admins(
            db,
            f"{user.name} requested to {verb} submission #{sub.id}"
            f"{f' ({form.name})' if form else ''} to {entity.name}.",
            title="New allocation request",
            type="allocation_request",
            data={"request_id": r.id, "submission_id": sub.id, "entity_id": entity.entity_id},
        )
        add_audit_log(db, actor_id=user.id, action="create", entity="allocation_request", entity_id=r.id, after=_request_out(r))
        db.commit()
    except IntegrityError:
        # lost the race against a concurrent request for the same submission
        db.rollback()
        raise HTTPException(status_code=409, detail="A pending request already exists for this submission")
    except SQLAlchemyError:
        raise rollback_500(db, logger, "create allocation request")

    db.refresh(r)
    return {"success": True, "request": _request_out(r)}


@router.get("/allocation-requests/{request_id}")
def get_request(request_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    r = _get_request_or_404(db, request_id)
    require(is_admin(user) or r.requested_by == user.id)

    out = _request_out(r)
    sub = r.submission
    if sub is not None:
        form = db.get(Form, sub.form_id)
        values = responses_by_submission(db, [sub.id])
        out["submission"] = submission_out(
            sub,
            ordered_fields(form) if form else [],
            values.get(sub.id, {}),
            entity_names(db, [sub.entity_id]),
            CandidateCache(db),
        )
        out["form"] = {"id": form.id, "name": form.name, "code": form.code} if form else None
    return {"request": out}


@router.put("/allocation-requests/{request_id}")
def decide_request(
    request_id: int,
    data: AllocationDecisionIn,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_allocate(user))
    require(data.action in known_actions(), f"Invalid action. Must be one of: {', '.join(known_actions())}", 400)
    r = _get_request_or_404(db, request_id)
    try:
        t = get_transition(r.status, data.action)
    except KeyError:
        require(False, f"Request is already {r.status.value}", 409)

    entity = db.get(Entity, r.requested_entity_id)
    sub = db.get(FormSubmission, r.submission_id)
    if t.allocates:
        require(entity is not None, "Requested entity no longer exists", 404)
        require(sub is not None, "Submission no longer exists", 404)

    entity_name = entity.name if entity else f"#{r.requested_entity_id}"
    try:
        r.status = t.to_status
        r.pending_submission_id = None
        r.admin_notes = (data.admin_notes or "").strip() or None
        if t.allocates:
            before = sub.entity_id
            sub.entity_id = entity.entity_id
            add_audit_log(
                db,
                actor_id=user.id,
                action="allocate",
                entity="submission",
                entity_id=sub.id,
                before={"entity_id": before},
                after={"entity_id": entity.entity_id},
                comment=f"allocation request {r.id}",
            )
        notify(
            db,
            r.requested_by,
            f"Your request to allocate submission #{r.submission_id} to {entity_name} has been {t.to_status.value}.",
            title=f"Allocation request {t.to_status.value}",
            type=f"allocation_{t.to_status.value}",
            data={"request_id": r.id, "submission_id": r.submission_id, "admin_notes": r.admin_notes},
        )
        add_audit_log(
            db,
            actor_id=user.id,
            action=data.action,
            entity="allocation_request",
            entity_id=r.id,
            before={"status": t.from_status.value},
            after={"status": t.to_status.value, "admin_notes": r.admin_notes},
        )
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "process allocation request")

    logger.info("allocation request %s %s by %s", r.id, t.to_status.value, user.id)
    db.refresh(r)
    return {"success": True, "request": _request_out(r)}


@router.delete("/allocation-requests/{request_id}")
def delete_request(request_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    r = _get_request_or_404(db, request_id)
    require(is_admin(user) or r.requested_by == user.id)
    require(r.status == AllocationStatus.PENDING, "Only pending requests can be withdrawn", 409)

    try:
        add_audit_log(db, actor_id=user.id, action="delete", entity="allocation_request", entity_id=r.id, before=_request_out(r))
        db.delete(r)
        db.commit()
    except SQLAlchemyError:
        raise rollback_500(db, logger, "delete allocation request")
    return {"success": True}
