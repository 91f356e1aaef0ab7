from __future__ import annotations

from datetime import datetime

from sqlalchemy import Integer, ForeignKey, String, DateTime, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from formdesk.db.base import Base


class UniMapping(Base):
    """University name -> owning entity. Also a lookup source for "database" fields."""

    __tablename__ = "uni_mapping"

    uni_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uni_name: Mapped[str] = mapped_column(String(255), index=True)
    entity_id: Mapped[int | None] = mapped_column(ForeignKey("entity.entity_id"), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow, server_default=text("CURRENT_TIMESTAMP")
    )

    entity = relationship("Entity")
