from sqlalchemy.orm import Session

from app.core.database import commit_or_raise, datastore_errors
from app.core.errors import Conflict, Forbidden, NotFound
from app.models.audit import AuditAction
from app.models.certificate import Certificate
from app.models.user import User, UserRole
from app.services.audit import AuditTrailRecorder
from app.services.roster import Roster


def list_users(db: Session, role: UserRole | None = None) -> list[User]:
    query = db.query(User)
    if role is not None:
        query = query.filter(User.role == role)
    with datastore_errors(db):
        return query.order_by(User.name).all()


def get_user(db: Session, user_id: str) -> User:
    with datastore_errors(db):
        user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found.")
    return user


def delete_user(
    db: Session,
    user_id: str,
    actor: User,
    roster: Roster,
    audit: AuditTrailRecorder,
) -> None:
    """Admin-only hard delete. Enrollments and certificates go first, in one commit."""
    if actor.role is not UserRole.ADMIN:
        raise Forbidden("Only admins can delete users.")
    user = get_user(db, user_id)
    if user.role is UserRole.ADMIN:
        raise Forbidden("Admin accounts cannot be deleted.")
    if roster.owns_classes(user.id):
        raise Conflict("Reassign or remove this teacher's classes first.")

    summary = f"{user.role.value.lower()} {user.email} ({user_id})"
    enrollments = roster.remove_student(user.id)
    with datastore_errors(db):
        certificates = (
            db.query(Certificate)
            .filter(Certificate.student_id == user.id)
            .delete(synchronize_session=False)
        )
    db.delete(user)
    commit_or_raise(db)

    audit.record(
        actor.id, actor.name, AuditAction.DELETE_USER,
        f"Deleted {summary}; "
        f"removed {certificates} certificates and {enrollments} enrollments",
    )
