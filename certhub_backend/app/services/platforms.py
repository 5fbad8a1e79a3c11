from sqlalchemy.orm import Session

from app.core.database import commit_or_raise, datastore_errors
from app.core.errors import Conflict, Forbidden, ValidationError
from app.models.audit import AuditAction
from app.models.platform import Platform
from app.models.user import User
from app.schemas.platform import PlatformCreateRequest
from app.services.audit import AuditTrailRecorder

DEFAULT_COLOR = "#64748b"


def list_platforms(db: Session) -> list[Platform]:
    with datastore_errors(db):
        return db.query(Platform).order_by(Platform.name).all()


def add_platform(
    db: Session,
    payload: PlatformCreateRequest,
    actor: User,
    audit: AuditTrailRecorder,
) -> Platform:
    if not actor.is_staff:
        raise Forbidden("Only teachers and admins can add platforms.")
    name = payload.name.strip()
    if not name:
        raise ValidationError("Platform name is required.")
    with datastore_errors(db):
        taken = db.query(Platform).filter(Platform.name == name).first() is not None
    if taken:
        raise Conflict(f"Platform '{name}' already exists.")
    platform = Platform(name=name, color=payload.color or DEFAULT_COLOR, icon=payload.icon)
    db.add(platform)
    commit_or_raise(db, f"Platform '{name}' already exists.")
    audit.record(actor.id, actor.name, AuditAction.ADD_PLATFORM, f"Added platform {name}")
    return platform


DEFAULT_PLATFORMS = [
    ("Coursera", "#1d4ed8"),
    ("Udemy", "#7c3aed"),
    ("LinkedIn Learning", "#0369a1"),
    ("Pluralsight", "#be123c"),
    ("EdX", "#000000"),
]


def seed_default_platforms(db: Session) -> list[Platform]:
    """Insert the stock platforms that are missing. Safe to run repeatedly."""
    with datastore_errors(db):
        existing = {name for (name,) in db.query(Platform.name).all()}
    created = [
        Platform(name=name, color=color)
        for name, color in DEFAULT_PLATFORMS
        if name not in existing
    ]
    db.add_all(created)
    commit_or_raise(db)
    return created
