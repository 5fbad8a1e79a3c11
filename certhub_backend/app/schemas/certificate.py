from datetime import date, datetime

from pydantic import BaseModel, Field

from app.models.certificate import CertificateStatus


class CertificateSubmitRequest(BaseModel):
    """Either ``file_url`` (already hosted) or ``image_base64`` (to upload) is required."""

    title: str = Field(..., min_length=1)
    platform: str = Field(..., min_length=1)
    issued_date: date
    student_id: str | None = None  # defaults to the caller
    file_url: str | None = None
    image_base64: str | None = None


class CertificateTransitionRequest(BaseModel):
    status: CertificateStatus
    remarks: str | None = None


class CertificateResponse(BaseModel):
    id: str
    student_id: str
    title: str
    platform: str
    issued_date: date
    file_url: str
    status: CertificateStatus
    remarks: str | None = None
    verified_by: str | None = None
    verified_at: datetime | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class PublicCertificateResponse(BaseModel):
    """Unauthenticated projection served by the verification link."""

    id: str
    student_id: str
    student_name: str
    title: str
    platform: str
    issued_date: date
    file_url: str
    status: CertificateStatus
    remarks: str | None = None
    verified_by: str | None = None
    verifier_name: str | None = None
    verified_at: datetime | None = None


class CertificateStatsResponse(BaseModel):
    total: int
    by_status: dict[str, int]
    by_platform: dict[str, int]
