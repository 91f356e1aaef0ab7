from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, ForeignKey, Boolean, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base


class FormSubmission(Base):
    __tablename__ = "form_submissions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id"), index=True)

    # Creation time; never updated (moves between forms carry it over).
    timestamp: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )

    # NULL/0 => unallocated. No FK: legacy rows carry 0.
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # Recomputed per form by the duplicate rescan.
    duplicated: Mapped[bool] = mapped_column(Boolean, default=False, server_default=text("0"), index=True)

    form = relationship("Form")
    responses = relationship(
        "FormResponse",
        back_populates="submission",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
