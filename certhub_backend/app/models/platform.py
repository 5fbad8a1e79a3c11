from sqlalchemy import Column, DateTime, String

from app.models.base import Base, new_id, utcnow


class Platform(Base):
    __tablename__ = "platforms"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    color = Column(String(50), nullable=False, default="#64748b")
    icon = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
