from pydantic import BaseModel, Field


class PlatformCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    color: str | None = None
    icon: str | None = None


class PlatformResponse(PlatformCreateRequest):
    id: str
    color: str

    model_config = {"from_attributes": True}
