import enum

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from app.models.base import Base, new_id, utcnow


class CertificateStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not CertificateStatus.PENDING


class Certificate(Base):
    __tablename__ = "certificates"

    # Doubles as the public verification token, so it must stay unguessable.
    id = Column(String(32), primary_key=True, default=new_id)
    student_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False)
    platform = Column(String, nullable=False)
    issued_date = Column(Date, nullable=False)
    file_url = Column(Text, nullable=False)
    status = Column(
        Enum(CertificateStatus, name="certificate_status"),
        nullable=False,
        default=CertificateStatus.PENDING,
        index=True,
    )
    remarks = Column(Text, nullable=True)
    verified_by = Column(String(32), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    student = relationship("User", foreign_keys=[student_id])
