from sqlalchemy import Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from formdesk.db.base import Base

class DuplicateSetting(Base):
    """Fields of a form that make up its duplicate key (empty => phone/email)."""

    __tablename__ = "form_duplicate_settings"

    form_id: Mapped[int] = mapped_column(ForeignKey("forms.id", ondelete="CASCADE"), primary_key=True)
    field_id: Mapped[int] = mapped_column(ForeignKey("form_fields.id", ondelete="CASCADE"), primary_key=True)
