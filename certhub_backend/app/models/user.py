import enum

from sqlalchemy import Column, DateTime, Enum, String

from app.models.base import Base, new_id, utcnow


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


STAFF_ROLES = frozenset({UserRole.TEACHER, UserRole.ADMIN})


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(UserRole, name="user_role"), nullable=False, default=UserRole.STUDENT)
    avatar = Column(String, nullable=True)
    # Student-only profile fields
    department = Column(String, nullable=True)
    class_name = Column(String, nullable=True)
    section = Column(String, nullable=True)
    roll_number = Column(String, nullable=True, unique=True)
    mobile_number = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
