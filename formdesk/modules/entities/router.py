from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.allocation import is_organic_name
from formdesk.core.rbac import can_manage_masterdata, require
from formdesk.db.models.allocation_request import AllocationRequest
from formdesk.db.models.entity import ENTITY_TYPES, Entity
from formdesk.db.models.submission import FormSubmission
from formdesk.db.models.uni_mapping import UniMapping
from formdesk.db.session import get_db
from formdesk.modules.entities.schemas import EntityIn, EntityUpdate
from formdesk.utils.audit import add_audit_log
from formdesk.utils.tx import commit_or_500

logger = logging.getLogger("formdesk.entities")

router = APIRouter(prefix="/entities", tags=["entities"])


def _entity_out(e: Entity) -> dict:
    return {"entity_id": e.entity_id, "name": e.name, "type": e.type, "is_organic": is_organic_name(e.name)}


def _name_taken(db: Session, name: str, exclude_id: int | None = None) -> bool:
    q = db.query(Entity.entity_id).filter(func.lower(Entity.name) == name.lower())
    if exclude_id is not None:
        q = q.filter(Entity.entity_id != exclude_id)
    return q.first() is not None


@router.get("")
def list_entities(type: str | None = None, q: str = "", db: Session = Depends(get_db), user=Depends(get_current_user)):
    query = db.query(Entity)
    if type:
        query = query.filter(Entity.type == type)
    if q.strip():
        query = query.filter(Entity.name.ilike(f"%{q.strip()}%"))
    return {"entities": [_entity_out(e) for e in query.order_by(Entity.name.asc()).all()], "types": list(ENTITY_TYPES)}


@router.post("", status_code=201)
def create_entity(data: EntityIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    name = data.name.strip()
    require(bool(name), "Name cannot be empty", 400)
    require(data.type in ENTITY_TYPES, f"Type must be one of: {', '.join(ENTITY_TYPES)}", 400)
    require(not _name_taken(db, name), "An entity with this name already exists", 409)

    e = Entity(name=name, type=data.type)
    db.add(e)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        require(False, "An entity with this name already exists", 409)
    add_audit_log(db, actor_id=user.id, action="create", entity="entity", entity_id=e.entity_id, after=_entity_out(e))
    commit_or_500(db, logger, "create entity")
    return {"entity": _entity_out(e)}


@router.put("/{entity_id}")
def update_entity(entity_id: int, data: EntityUpdate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    e = db.get(Entity, entity_id)
    require(e is not None, "Entity not found", 404)
    require(not is_organic_name(e.name), "The organic entity cannot be modified", 409)

    name = data.name.strip() if data.name is not None else None
    if name is not None:
        require(bool(name), "Name cannot be empty", 400)
        require(not is_organic_name(name), "This name is reserved", 409)
        require(not _name_taken(db, name, exclude_id=e.entity_id), "An entity with this name already exists", 409)
    if data.type is not None:
        require(data.type in ENTITY_TYPES, f"Type must be one of: {', '.join(ENTITY_TYPES)}", 400)

    before = _entity_out(e)
    if name is not None:
        e.name = name
    if data.type is not None:
        e.type = data.type

    add_audit_log(db, actor_id=user.id, action="update", entity="entity", entity_id=e.entity_id, before=before, after=_entity_out(e))
    commit_or_500(db, logger, "update entity")
    return {"entity": _entity_out(e)}


@router.delete("/{entity_id}")
def delete_entity(entity_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    e = db.get(Entity, entity_id)
    require(e is not None, "Entity not found", 404)
    require(not is_organic_name(e.name), "The organic entity cannot be deleted", 409)

    in_use = {
        "submissions": db.query(FormSubmission).filter(FormSubmission.entity_id == e.entity_id).count(),
        "uni_mappings": db.query(UniMapping).filter(UniMapping.entity_id == e.entity_id).count(),
        "allocation_requests": db.query(AllocationRequest)
        .filter(AllocationRequest.requested_entity_id == e.entity_id)
        .count(),
    }
    used = {k: v for k, v in in_use.items() if v}
    require(
        not used,
        "Entity is still referenced by " + ", ".join(f"{v} {k}" for k, v in used.items()),
        409,
    )

    add_audit_log(db, actor_id=user.id, action="delete", entity="entity", entity_id=e.entity_id, before=_entity_out(e))
    db.delete(e)
    commit_or_500(db, logger, "delete entity")
    return {"success": True}
