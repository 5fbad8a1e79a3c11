from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from app.api.deps import (
    bind_settings,
    get_audit,
    get_current_user,
    get_lifecycle,
    get_roster,
    require_admin,
    require_staff,
)
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.models.audit import AuditAction
from app.models.certificate import CertificateStatus
from app.models.user import User, UserRole
from app.schemas.audit import AuditLogResponse
from app.schemas.auth import LoginRequest, RegisterRequest, TokenResponse
from app.schemas.certificate import (
    CertificateResponse,
    CertificateStatsResponse,
    CertificateSubmitRequest,
    CertificateTransitionRequest,
    PublicCertificateResponse,
)
from app.schemas.classroom import ClassCreateRequest, ClassResponse, EnrollRequest, EnrollResponse
from app.schemas.platform import PlatformCreateRequest, PlatformResponse
from app.schemas.user import UserOut
from app.services.audit import AuditTrailRecorder
from app.services.auth import login_user, register_user
from app.services.certificates import CertificateLifecycleManager
from app.services.platforms import add_platform, list_platforms
from app.services.roster import Roster
from app.services.users import delete_user, list_users

router = APIRouter(prefix="/api", dependencies=[Depends(bind_settings)])


# ── Auth ──────────────────────────────────────────────────────────────────────

@router.post("/auth/register", response_model=TokenResponse, status_code=201)
def register_endpoint(
    payload: RegisterRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    roster: Roster = Depends(get_roster),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    return register_user(db, settings, payload, roster, audit)


@router.post("/auth/login", response_model=TokenResponse)
def login_endpoint(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    return login_user(db, settings, payload, audit)


@router.get("/me", response_model=UserOut)
def me_endpoint(current_user: User = Depends(get_current_user)):
    return current_user


# ── Public verification ───────────────────────────────────────────────────────
# No auth on purpose: the certificate id is the bearer token.

@router.get("/public/certificates/{certificate_id}", response_model=PublicCertificateResponse)
def public_certificate_endpoint(
    certificate_id: str,
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.public_view(certificate_id)


# ── Certificates ──────────────────────────────────────────────────────────────

@router.post("/certificates", response_model=CertificateResponse, status_code=201)
def submit_certificate_endpoint(
    payload: CertificateSubmitRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.submit(
        current_user,
        title=payload.title,
        platform=payload.platform,
        issued_date=payload.issued_date,
        student_id=payload.student_id,
        file_url=payload.file_url,
        payload=payload.image_base64,
    )


@router.get("/certificates", response_model=list[CertificateResponse])
def list_certificates_endpoint(
    student_id: str | None = None,
    status: CertificateStatus | None = None,
    current_user: User = Depends(get_current_user),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.list_for(current_user, student_id=student_id, status=status)


@router.get("/certificates/{certificate_id}", response_model=CertificateResponse)
def get_certificate_endpoint(
    certificate_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.get(certificate_id, current_user)


@router.put("/certificates/{certificate_id}", response_model=CertificateResponse)
def review_certificate_endpoint(
    certificate_id: str,
    payload: CertificateTransitionRequest,
    current_user: User = Depends(get_current_user),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.transition(certificate_id, payload.status, current_user, payload.remarks)


@router.delete("/certificates/{certificate_id}", status_code=204)
def delete_certificate_endpoint(
    certificate_id: str,
    current_user: User = Depends(get_current_user),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    lifecycle.delete(certificate_id, current_user)
    return Response(status_code=204)


# ── Users ─────────────────────────────────────────────────────────────────────

@router.get("/users", response_model=list[UserOut])
def list_users_endpoint(
    role: UserRole | None = None,
    db: Session = Depends(get_db),
    _: User = Depends(require_staff),
):
    return list_users(db, role)


@router.delete("/users/{user_id}", status_code=204)
def delete_user_endpoint(
    user_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_admin),
    roster: Roster = Depends(get_roster),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    delete_user(db, user_id, current_user, roster, audit)
    return Response(status_code=204)


# ── Platforms ─────────────────────────────────────────────────────────────────

@router.get("/platforms", response_model=list[PlatformResponse])
def list_platforms_endpoint(
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return list_platforms(db)


@router.post("/platforms", response_model=PlatformResponse, status_code=201)
def add_platform_endpoint(
    payload: PlatformCreateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    return add_platform(db, payload, current_user, audit)


# ── Classes ───────────────────────────────────────────────────────────────────

@router.get("/classes", response_model=list[ClassResponse])
def list_classes_endpoint(
    teacher_id: str | None = None,
    _: User = Depends(require_staff),
    roster: Roster = Depends(get_roster),
):
    return roster.list_classes(teacher_id)


@router.post("/classes", response_model=ClassResponse, status_code=201)
def create_class_endpoint(
    payload: ClassCreateRequest,
    current_user: User = Depends(require_staff),
    roster: Roster = Depends(get_roster),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    classroom = roster.create_class(payload.name, payload.course_name, payload.teacher_id)
    audit.record(
        current_user.id, current_user.name, AuditAction.CREATE_CLASS,
        f"Created class {classroom.name} ({classroom.id}) for teacher {classroom.teacher_id}",
    )
    return ClassResponse(
        id=classroom.id,
        name=classroom.name,
        course_name=classroom.course_name,
        teacher_id=classroom.teacher_id,
        teacher_name=classroom.teacher.name if classroom.teacher else None,
        created_at=classroom.created_at,
    )


@router.post("/classes/{class_id}/enroll", response_model=EnrollResponse)
def enroll_students_endpoint(
    class_id: str,
    payload: EnrollRequest,
    current_user: User = Depends(require_staff),
    roster: Roster = Depends(get_roster),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    enrolled = roster.enroll(class_id, set(payload.student_ids))
    if enrolled:
        audit.record(
            current_user.id, current_user.name, AuditAction.ENROLL,
            f"Enrolled {enrolled} students in class {class_id}",
        )
    return EnrollResponse(class_id=class_id, enrolled=enrolled)


@router.get("/classes/{class_id}/students", response_model=list[UserOut])
def class_students_endpoint(
    class_id: str,
    _: User = Depends(require_staff),
    roster: Roster = Depends(get_roster),
):
    return roster.class_students(class_id)


# ── Admin ─────────────────────────────────────────────────────────────────────

@router.get("/admin/logs", response_model=list[AuditLogResponse])
def audit_logs_endpoint(
    limit: int | None = Query(None, ge=1),
    before: int | None = Query(None, description="Return entries older than this entry id"),
    action: AuditAction | None = None,
    _: User = Depends(require_admin),
    audit: AuditTrailRecorder = Depends(get_audit),
):
    if before is not None:
        return audit.list_before(before, limit, action)
    return audit.list_recent(limit, action)


@router.get("/admin/stats", response_model=CertificateStatsResponse)
def certificate_stats_endpoint(
    current_user: User = Depends(require_staff),
    lifecycle: CertificateLifecycleManager = Depends(get_lifecycle),
):
    return lifecycle.stats(current_user)
