"""Entity allocation rules.

Kept in one place so the routers stay thin:
1) which submissions count as "unallocated" (the manual-allocation queue)
2) the organic entity (reserved fallback, protected from edits)
3) allocation request state machine: pending -> approved | rejected
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from formdesk.core.config import settings
from formdesk.db.models.allocation_request import AllocationRequest, AllocationStatus
from formdesk.db.models.entity import Entity
from formdesk.db.models.submission import FormSubmission


Action = str  # "approve" | "reject"


@dataclass(frozen=True, slots=True)
class Transition:
    from_status: AllocationStatus
    action: Action
    to_status: AllocationStatus
    # approve writes requested_entity_id onto the submission
    allocates: bool


TRANSITIONS: tuple[Transition, ...] = (
    Transition(AllocationStatus.PENDING, "approve", AllocationStatus.APPROVED, allocates=True),
    Transition(AllocationStatus.PENDING, "reject", AllocationStatus.REJECTED, allocates=False),
)


def get_transition(status: AllocationStatus, action: Action) -> Transition:
    for t in TRANSITIONS:
        if t.from_status == status and t.action == action:
            return t
    raise KeyError("unknown transition")


def known_actions() -> tuple[Action, ...]:
    out: list[Action] = []
    for t in TRANSITIONS:
        if t.action not in out:
            out.append(t.action)
    return tuple(out)


# ---- Organic entity ----


def is_organic_name(name: str | None) -> bool:
    return (name or "").strip().lower() == settings.ORGANIC_ENTITY_NAME.strip().lower()


def get_organic_entity(db: Session) -> Entity | None:
    return (
        db.query(Entity)
        .filter(func.lower(Entity.name) == settings.ORGANIC_ENTITY_NAME.strip().lower())
        .first()
    )


def organic_entity_id(db: Session) -> int | None:
    e = get_organic_entity(db)
    return e.entity_id if e else None


# ---- Queue ----


def is_unallocated(entity_id: int | None, organic_id: int | None) -> bool:
    if not entity_id:
        return True
    return organic_id is not None and int(entity_id) == int(organic_id)


def unallocated_clause(organic_id: int | None):
    """SQL filter matching `is_unallocated` for FormSubmission rows."""
    conds = [FormSubmission.entity_id.is_(None), FormSubmission.entity_id == 0]
    if organic_id is not None:
        conds.append(FormSubmission.entity_id == organic_id)
    return or_(*conds)


def has_pending_request(db: Session, submission_id: int) -> bool:
    return (
        db.query(AllocationRequest.id)
        .filter(
            AllocationRequest.submission_id == submission_id,
            AllocationRequest.status == AllocationStatus.PENDING,
        )
        .first()
        is not None
    )
