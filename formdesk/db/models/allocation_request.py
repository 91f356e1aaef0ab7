from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Integer, ForeignKey, Enum, Text, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base


class AllocationStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AllocationRequest(Base):
    __tablename__ = "allocation_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("form_submissions.id", ondelete="CASCADE"), index=True)
    requested_by: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    requested_entity_id: Mapped[int] = mapped_column(ForeignKey("entity.entity_id"), index=True)

    status: Mapped[AllocationStatus] = mapped_column(
        Enum(AllocationStatus), index=True, default=AllocationStatus.PENDING
    )
    # submission_id while pending, NULL once decided: one pending request per submission
    pending_submission_id: Mapped[int | None] = mapped_column(Integer, unique=True, nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP"), index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP")
    )

    requester = relationship("User")
    entity = relationship("Entity")
    submission = relationship("FormSubmission")
