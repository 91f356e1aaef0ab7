from sqlalchemy import String, Integer
from sqlalchemy.orm import Mapped, mapped_column
from formdesk.db.base import Base

ENTITY_TYPES = ("local", "national", "organic", "other")

class Entity(Base):
    __tablename__ = "entity"

    entity_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(200), unique=True, index=True)
    type: Mapped[str] = mapped_column(String(30), default="local", index=True)
