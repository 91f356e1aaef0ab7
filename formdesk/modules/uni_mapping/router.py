from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from formdesk.auth.deps import get_current_user
from formdesk.core.rbac import can_manage_masterdata, require
from formdesk.db.models.entity import Entity
from formdesk.db.models.uni_mapping import UniMapping
from formdesk.db.session import get_db
from formdesk.modules.uni_mapping.schemas import UniMappingIn, UniMappingUpdate
from formdesk.utils.audit import add_audit_log
from formdesk.utils.tx import commit_or_500

logger = logging.getLogger("formdesk.uni_mapping")

router = APIRouter(prefix="/uni-mapping", tags=["uni-mapping"])


def _out(m: UniMapping) -> dict:
    return {
        "uni_id": m.uni_id,
        "uni_name": m.uni_name,
        "entity_id": m.entity_id,
        "entity_name": m.entity.name if m.entity else None,
        "created_at": m.created_at,
        "updated_at": m.updated_at,
    }


def _require_entity(db: Session, entity_id: int) -> None:
    require(db.get(Entity, entity_id) is not None, "Entity not found", 404)


@router.get("")
def list_mappings(
    q: str = "",
    entity_id: int | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    query = db.query(UniMapping)
    if entity_id is not None:
        query = query.filter(UniMapping.entity_id == entity_id)
    if q.strip():
        query = query.filter(UniMapping.uni_name.ilike(f"%{q.strip()}%"))

    total = query.count()
    items = query.order_by(UniMapping.uni_id.desc()).offset((page - 1) * limit).limit(limit).all()
    pages = math.ceil(total / limit) if total else 0
    return {
        "items": [_out(m) for m in items],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": pages,
            "has_next": page < pages,
            "has_prev": page > 1,
        },
    }


@router.post("", status_code=201)
def create_mapping(data: UniMappingIn, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    name = data.uni_name.strip()
    require(bool(name), "uni_name cannot be empty", 400)
    _require_entity(db, data.entity_id)

    m = UniMapping(uni_name=name, entity_id=data.entity_id)
    db.add(m)
    db.flush()
    add_audit_log(db, actor_id=user.id, action="create", entity="uni_mapping", entity_id=m.uni_id, after={"uni_name": name, "entity_id": m.entity_id})
    commit_or_500(db, logger, "create uni mapping")
    db.refresh(m)
    return {"item": _out(m)}


@router.put("/{uni_id}")
def update_mapping(uni_id: int, data: UniMappingUpdate, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    m = db.get(UniMapping, uni_id)
    require(m is not None, "Mapping not found", 404)

    if data.uni_name is not None:
        require(bool(data.uni_name.strip()), "uni_name cannot be empty", 400)
    if data.entity_id is not None:
        _require_entity(db, data.entity_id)

    before = {"uni_name": m.uni_name, "entity_id": m.entity_id}
    if data.uni_name is not None:
        m.uni_name = data.uni_name.strip()
    if data.entity_id is not None:
        m.entity_id = data.entity_id

    add_audit_log(db, actor_id=user.id, action="update", entity="uni_mapping", entity_id=m.uni_id, before=before, after={"uni_name": m.uni_name, "entity_id": m.entity_id})
    commit_or_500(db, logger, "update uni mapping")
    db.refresh(m)
    return {"item": _out(m)}


@router.delete("/{uni_id}")
def delete_mapping(uni_id: int, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_manage_masterdata(user))
    m = db.get(UniMapping, uni_id)
    require(m is not None, "Mapping not found", 404)
    add_audit_log(db, actor_id=user.id, action="delete", entity="uni_mapping", entity_id=m.uni_id, before={"uni_name": m.uni_name, "entity_id": m.entity_id})
    db.delete(m)
    commit_or_500(db, logger, "delete uni mapping")
    return {"success": True}
