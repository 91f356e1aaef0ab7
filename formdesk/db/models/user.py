import enum
from sqlalchemy import String, Integer, Enum, Boolean, text
from sqlalchemy.orm import Mapped, mapped_column
from formdesk.db.base import Base

class Role(str, enum.Enum):
    ADMIN = "admin"
    LEAD = "lead"
    MEMBER = "member"

ROLE_LABELS = {
    Role.ADMIN: "Administrator",
    Role.LEAD: "Lead",
    Role.MEMBER: "Member",
}

class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120))
    email: Mapped[str] = mapped_column(String(190), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))

    role: Mapped[Role] = mapped_column(Enum(Role), index=True, default=Role.MEMBER)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default=text("1"), index=True)

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.value)
