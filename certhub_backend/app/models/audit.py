import enum

from sqlalchemy import Column, DateTime, Enum, Integer, String, Text

from app.models.base import Base, utcnow


class AuditAction(str, enum.Enum):
    REGISTER = "REGISTER"
    LOGIN = "LOGIN"
    UPLOAD = "UPLOAD"
    VERIFY = "VERIFY"
    REJECT = "REJECT"
    DELETE_CERT = "DELETE_CERT"
    DELETE_USER = "DELETE_USER"
    CREATE_CLASS = "CREATE_CLASS"
    ENROLL = "ENROLL"
    ADD_PLATFORM = "ADD_PLATFORM"


class AuditLogEntry(Base):
    """Append-only; rows are never updated or deleted."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(32), nullable=False, index=True)
    user_name = Column(String, nullable=True)
    action = Column(Enum(AuditAction, name="audit_action"), nullable=False, index=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=utcnow, index=True)
