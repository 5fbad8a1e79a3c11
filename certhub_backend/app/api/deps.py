from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.errors import Forbidden
from app.models.user import User, UserRole
from app.services.audit import AuditTrailRecorder
from app.services.auth import authenticate_token
from app.services.certificates import CertificateLifecycleManager
from app.services.notifications import Notifier, SmtpNotifier
from app.services.roster import Roster
from app.services.storage import BlobStorage, CloudinaryStorage

_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def bind_settings(request: Request, settings: Settings = Depends(get_settings)) -> None:
    """Expose the resolved settings to the exception handlers for this request."""
    request.state.settings = settings


def get_current_user(
    token: str | None = Depends(_oauth2_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> User:
    return authenticate_token(db, settings, token)


def require_roles(*roles: UserRole):
    allowed = frozenset(roles)

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            raise Forbidden("You do not have permission to perform this action.")
        return user

    return dependency


require_staff = require_roles(UserRole.TEACHER, UserRole.ADMIN)
require_admin = require_roles(UserRole.ADMIN)


def get_storage(settings: Settings = Depends(get_settings)) -> BlobStorage:
    return CloudinaryStorage(settings)


def get_notifier(settings: Settings = Depends(get_settings)) -> Notifier:
    return SmtpNotifier(settings)


def get_audit(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> AuditTrailRecorder:
    return AuditTrailRecorder(db, settings)


def get_roster(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Roster:
    return Roster(db, settings)


def get_lifecycle(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    audit: AuditTrailRecorder = Depends(get_audit),
    roster: Roster = Depends(get_roster),
    storage: BlobStorage = Depends(get_storage),
    notifier: Notifier = Depends(get_notifier),
) -> CertificateLifecycleManager:
    return CertificateLifecycleManager(db, settings, audit, roster, storage, notifier)
