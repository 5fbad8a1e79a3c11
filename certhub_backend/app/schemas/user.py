from datetime import datetime

from pydantic import BaseModel

from app.models.user import UserRole


class UserOut(BaseModel):
    """Never exposes the password hash."""

    id: str
    name: str
    email: str
    role: UserRole
    avatar: str | None = None
    department: str | None = None
    class_name: str | None = None
    section: str | None = None
    roll_number: str | None = None
    mobile_number: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
