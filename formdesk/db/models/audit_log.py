from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, ForeignKey, String, Text, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column

from formdesk.db.base import Base


class AuditLog(Base):
    """Who changed what: entity edits, allocations, duplicate rescans, bulk submission operations."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    actor_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    # create/update/delete/allocate/approve/reject/recheck/move
    action: Mapped[str] = mapped_column(String(50), index=True)

    # entity/form/submission/allocation_request/uni_mapping/...
    entity: Mapped[str] = mapped_column(String(80), index=True)
    entity_id: Mapped[int] = mapped_column(Integer, index=True)

    before_json: Mapped[str] = mapped_column(Text, default="")
    after_json: Mapped[str] = mapped_column(Text, default="")
    comment: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
