from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from app.models.base import Base, new_id, utcnow


class Classroom(Base):
    __tablename__ = "classes"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    course_name = Column(String, nullable=False)
    teacher_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    teacher = relationship("User", foreign_keys=[teacher_id])
    enrollments = relationship("Enrollment", back_populates="classroom")


class Enrollment(Base):
    __tablename__ = "class_enrollments"
    __table_args__ = (UniqueConstraint("class_id", "student_id", name="uq_enrollment_pair"),)

    id = Column(String(32), primary_key=True, default=new_id)
    class_id = Column(String(32), ForeignKey("classes.id"), nullable=False, index=True)
    student_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    classroom = relationship("Classroom", back_populates="enrollments")
