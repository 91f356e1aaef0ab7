from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, String, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base


class Form(Base):
    __tablename__ = "forms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), index=True)

    # Public identifier used by the submit endpoint (/forms/by-code/{code}/submit)
    code: Mapped[str] = mapped_column(String(120), unique=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=datetime.utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    fields = relationship(
        "FormField",
        back_populates="form",
        order_by="FormField.sort_order",
        cascade="all, delete-orphan",
    )
