import logging
from urllib.parse import quote

from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.database import commit_or_raise, datastore_errors
from app.core.errors import CertHubError, Conflict, Forbidden, Unauthorized
from app.core.security import create_access_token, decode_access_token, hash_password, verify_password
from app.models.audit import AuditAction
from app.models.user import User, UserRole
from app.schemas.auth import LoginRequest, RegisterRequest, TokenResponse
from app.schemas.user import UserOut
from app.services.audit import AuditTrailRecorder
from app.services.roster import Roster

logger = logging.getLogger(__name__)


def register_user(
    db: Session,
    settings: Settings,
    payload: RegisterRequest,
    roster: Roster,
    audit: AuditTrailRecorder,
) -> TokenResponse:
    if payload.role is UserRole.ADMIN and settings.admin_invite_code:
        if payload.invite_code != settings.admin_invite_code:
            raise Forbidden("A valid invite code is required to register as admin.")

    email = payload.email.lower()
    with datastore_errors(db):
        email_taken = db.query(User).filter(User.email == email).first() is not None
    if email_taken:
        raise Conflict("Email already registered.")

    is_student = payload.role is UserRole.STUDENT
    roll_number = None
    if is_student and payload.roll_number and payload.roll_number.strip():
        roll_number = payload.roll_number.strip()
    if roll_number and _roll_number_taken(db, roll_number):
        raise Conflict("Roll number already registered.")
    if is_student:
        roster.check_registration_class(payload.class_name)

    user = User(
        name=payload.name.strip(),
        email=email,
        hashed_password=hash_password(payload.password),
        role=payload.role,
        avatar=f"https://api.dicebear.com/7.x/avataaars/svg?seed={quote(payload.name)}",
    )
    if is_student:
        user.department = payload.department
        user.class_name = payload.class_name
        user.section = payload.section
        user.roll_number = roll_number
        user.mobile_number = payload.mobile_number
    db.add(user)
    commit_or_raise(db, "Email or roll number already registered.")

    if is_student and payload.class_name:
        try:
            roster.sync_registration(user, payload.class_name)
        except CertHubError:
            logger.exception("Class sync failed for new student %s", user.id)

    audit.record(user.id, user.name, AuditAction.REGISTER, f"User registered as {user.role.value}")
    return _token_for(settings, user)


def login_user(
    db: Session,
    settings: Settings,
    payload: LoginRequest,
    audit: AuditTrailRecorder,
) -> TokenResponse:
    with datastore_errors(db):
        user = db.query(User).filter(User.email == payload.email.lower()).first()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise Unauthorized("Invalid email or password.")
    audit.record(user.id, user.name, AuditAction.LOGIN, "User logged in")
    return _token_for(settings, user)


def authenticate_token(db: Session, settings: Settings, token: str | None) -> User:
    if not token:
        raise Unauthorized("Not authenticated.")
    user_id = decode_access_token(settings, token)
    if user_id is None:
        raise Unauthorized("Invalid token.")
    with datastore_errors(db):
        user = db.get(User, user_id)
    if user is None:
        raise Unauthorized("User not found.")
    return user


def _token_for(settings: Settings, user: User) -> TokenResponse:
    return TokenResponse(
        access_token=create_access_token(settings, user.id, user.role.value),
        user=UserOut.model_validate(user),
    )


def _roll_number_taken(db: Session, roll_number: str) -> bool:
    with datastore_errors(db):
        return db.query(User.id).filter(User.roll_number == roll_number).first() is not None
