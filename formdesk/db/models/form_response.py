from sqlalchemy import Integer, ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from formdesk.db.base import Base

class FormResponse(Base):
    __tablename__ = "form_responses"
    __table_args__ = (UniqueConstraint("submission_id", "field_id", name="uq_response_submission_field"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    submission_id: Mapped[int] = mapped_column(ForeignKey("form_submissions.id", ondelete="CASCADE"), index=True)
    field_id: Mapped[int] = mapped_column(ForeignKey("form_fields.id", ondelete="CASCADE"), index=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)

    submission = relationship("FormSubmission", back_populates="responses")
    field = relationship("FormField")
