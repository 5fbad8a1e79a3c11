from datetime import datetime

from pydantic import BaseModel

from app.models.audit import AuditAction


class AuditLogResponse(BaseModel):
    id: int
    user_id: str
    user_name: str | None = None
    action: AuditAction
    details: str | None = None
    timestamp: datetime

    model_config = {"from_attributes": True}
