"""
Certificate lifecycle: submission, review transitions, deletion and the
public verification read path.

A certificate enters PENDING on submission and leaves it exactly once, to
VERIFIED or REJECTED, through ``transition``. The status write is the primary
operation; the audit entry and the owner's email that follow it are
independent best-effort side effects and never roll it back.
"""
import logging
from datetime import date
from urllib.parse import urlparse

from sqlalchemy import func
from sqlalchemy.orm import Query, Session
from sqlalchemy.orm.attributes import set_committed_value

from app.core.config import Settings
from app.core.database import commit_or_raise, datastore_errors
from app.core.errors import AlreadyFinalized, Forbidden, NotFound, ValidationError
from app.models.audit import AuditAction
from app.models.base import utcnow
from app.models.certificate import Certificate, CertificateStatus
from app.models.user import STAFF_ROLES, User, UserRole
from app.services.audit import AuditTrailRecorder
from app.services.notifications import Notifier, certificate_status_message
from app.services.roster import Roster
from app.services.storage import BlobStorage

logger = logging.getLogger(__name__)

_REVIEW_ACTIONS = {
    CertificateStatus.VERIFIED: AuditAction.VERIFY,
    CertificateStatus.REJECTED: AuditAction.REJECT,
}


class CertificateLifecycleManager:
    def __init__(
        self,
        db: Session,
        settings: Settings,
        audit: AuditTrailRecorder,
        roster: Roster,
        storage: BlobStorage,
        notifier: Notifier,
    ):
        self.db = db
        self.settings = settings
        self.audit = audit
        self.roster = roster
        self.storage = storage
        self.notifier = notifier

    # ── Submission ────────────────────────────────────────────────────────────

    def submit(
        self,
        actor: User,
        title: str,
        platform: str,
        issued_date: date | str | None,
        student_id: str | None = None,
        file_url: str | None = None,
        payload: str | None = None,
    ) -> Certificate:
        student_id = student_id or actor.id
        if actor.id != student_id and actor.role is not UserRole.ADMIN:
            raise Forbidden("Students can only submit their own certificates.")

        title = (title or "").strip()
        platform = (platform or "").strip()
        if not title or not platform:
            raise ValidationError("Title and platform are required.")
        issued = _parse_issued_date(issued_date)

        with datastore_errors(self.db):
            student = self.db.get(User, student_id)
        if student is None or student.role is not UserRole.STUDENT:
            raise ValidationError(f"Student '{student_id}' does not exist.")

        if payload:
            file_url = self.storage.upload(payload, self.settings.cloudinary_folder)
        elif not _is_resolvable_url(file_url):
            raise ValidationError("A certificate file or a valid http(s) file URL is required.")

        certificate = Certificate(
            student_id=student.id,
            title=title,
            platform=platform,
            issued_date=issued,
            file_url=file_url,
            status=CertificateStatus.PENDING,
        )
        self.db.add(certificate)
        commit_or_raise(self.db)

        self.audit.record(
            actor.id, actor.name, AuditAction.UPLOAD,
            f"Certificate {certificate.id} uploaded for {student.id}: {title}",
        )
        return certificate

    # ── Review ────────────────────────────────────────────────────────────────

    def transition(
        self,
        certificate_id: str,
        new_status: CertificateStatus,
        actor: User,
        remarks: str | None = None,
    ) -> Certificate:
        if new_status not in _REVIEW_ACTIONS:
            raise ValidationError("Status must be VERIFIED or REJECTED.")
        if actor.role not in STAFF_ROLES:
            raise Forbidden("Only teachers and admins can review certificates.")

        values = {
            "status": new_status,
            "remarks": remarks or "",
            "verified_by": actor.id,
            "verified_at": utcnow(),
        }
        with datastore_errors(self.db):
            # The owner is read with the row: nothing after the commit may need the store.
            certificate, owner_name, owner_email = self._load_with_owner(certificate_id)
            self._check_review_scope(actor, certificate)
            if self.settings.allow_retransition:
                updated = self._write_review(certificate_id, values)
            else:
                # Compare-and-swap on PENDING so two concurrent reviews cannot both win.
                updated = self._write_review(
                    certificate_id, values, Certificate.status == CertificateStatus.PENDING
                )
        if updated == 0:
            self.db.rollback()
            return self._resolve_finalized(certificate_id, new_status)
        commit_or_raise(self.db)

        for key, value in values.items():
            set_committed_value(certificate, key, value)
        self.db.expunge(certificate)

        logger.info("Certificate %s marked %s by %s", certificate.id, new_status.value, actor.id)
        self.audit.record(
            actor.id, actor.name, _REVIEW_ACTIONS[new_status],
            f"Certificate {certificate.id} marked as {new_status.value}",
        )
        self._notify_owner(certificate, owner_name, owner_email)
        return certificate

    def _write_review(self, certificate_id: str, values: dict, *guards) -> int:
        return (
            self.db.query(Certificate)
            .filter(Certificate.id == certificate_id, *guards)
            .update(values, synchronize_session=False)
        )

    def _resolve_finalized(self, certificate_id: str, requested: CertificateStatus) -> Certificate:
        with datastore_errors(self.db):
            current = self.db.get(Certificate, certificate_id, populate_existing=True)
        if current is None:
            raise NotFound("Certificate not found.")
        if not current.status.is_terminal:
            # Lost the row between read and write without a status change; surface as conflict.
            raise AlreadyFinalized("Certificate changed during review; retry.")
        if current.status is requested:
            logger.info("Certificate %s already %s; nothing to do", certificate_id, requested.value)
            return current
        raise AlreadyFinalized(
            f"Certificate is already {current.status.value}; cannot mark it {requested.value}."
        )

    def _check_review_scope(self, actor: User, certificate: Certificate) -> None:
        if actor.role is UserRole.ADMIN or not self.settings.class_scoped_review:
            return
        if not self.roster.teaches_student(actor.id, certificate.student_id):
            raise Forbidden("You do not teach a class containing this student.")

    def _notify_owner(
        self, certificate: Certificate, owner_name: str | None, owner_email: str | None
    ) -> None:
        if not owner_email:
            logger.warning("Certificate %s has no reachable owner to notify", certificate.id)
            return
        subject, text, html = certificate_status_message(
            owner_name or "", certificate.title, certificate.status.value, certificate.remarks
        )
        try:
            self.notifier.send(owner_email, subject, text, html)
        except Exception:
            logger.exception("Notification for certificate %s failed", certificate.id)

    # ── Deletion ──────────────────────────────────────────────────────────────

    def delete(self, certificate_id: str, actor: User) -> None:
        with datastore_errors(self.db):
            certificate = self._load(certificate_id)
        if actor.role is not UserRole.ADMIN and actor.id != certificate.student_id:
            raise Forbidden("Only the owner or an admin can delete this certificate.")
        title = certificate.title
        self.db.delete(certificate)
        commit_or_raise(self.db)
        self.audit.record(
            actor.id, actor.name, AuditAction.DELETE_CERT,
            f"Certificate {certificate_id} deleted: {title}",
        )

    # ── Reads ─────────────────────────────────────────────────────────────────

    def get(self, certificate_id: str, actor: User) -> Certificate:
        with datastore_errors(self.db):
            certificate = self._load(certificate_id)
            if actor.id == certificate.student_id or actor.role is UserRole.ADMIN:
                return certificate
            if actor.role is UserRole.TEACHER:
                self._check_review_scope(actor, certificate)
                return certificate
        raise Forbidden("You cannot view this certificate.")

    def list_for(
        self,
        actor: User,
        student_id: str | None = None,
        status: CertificateStatus | None = None,
    ) -> list[Certificate]:
        query = self._visible(actor)
        if student_id:
            if actor.role is UserRole.STUDENT and student_id != actor.id:
                raise Forbidden("Students can only list their own certificates.")
            query = query.filter(Certificate.student_id == student_id)
        if status is not None:
            query = query.filter(Certificate.status == status)
        with datastore_errors(self.db):
            return query.order_by(Certificate.created_at.desc()).all()

    def stats(self, actor: User) -> dict:
        visible = self._visible(actor).subquery()
        by_status = {status.value: 0 for status in CertificateStatus}
        with datastore_errors(self.db):
            status_counts = (
                self.db.query(visible.c.status, func.count()).group_by(visible.c.status).all()
            )
            platform_counts = (
                self.db.query(visible.c.platform, func.count())
                .group_by(visible.c.platform)
                .order_by(visible.c.platform)
                .all()
            )
        for status, count in status_counts:
            by_status[CertificateStatus(status).value] = count
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_platform": dict(platform_counts),
        }

    def public_view(self, certificate_id: str) -> dict:
        """Projection for the unauthenticated verification link."""
        with datastore_errors(self.db):
            row = (
                self.db.query(Certificate, User.name)
                .join(User, User.id == Certificate.student_id)
                .filter(Certificate.id == certificate_id)
                .first()
            )
            if row is None:
                raise NotFound("Certificate not found.")
            certificate, student_name = row
            verifier = self.db.get(User, certificate.verified_by) if certificate.verified_by else None
        return {
            "id": certificate.id,
            "student_id": certificate.student_id,
            "student_name": student_name,
            "title": certificate.title,
            "platform": certificate.platform,
            "issued_date": certificate.issued_date,
            "file_url": certificate.file_url,
            "status": certificate.status,
            "remarks": certificate.remarks,
            "verified_by": certificate.verified_by,
            "verifier_name": verifier.name if verifier else None,
            "verified_at": certificate.verified_at,
        }

    def _visible(self, actor: User) -> Query:
        query = self.db.query(Certificate)
        if actor.role is UserRole.STUDENT:
            return query.filter(Certificate.student_id == actor.id)
        if actor.role is UserRole.TEACHER and self.settings.class_scoped_review:
            return query.filter(Certificate.student_id.in_(self.roster.students_of(actor.id)))
        return query

    def _load(self, certificate_id: str) -> Certificate:
        certificate = self.db.get(Certificate, certificate_id)
        if certificate is None:
            raise NotFound("Certificate not found.")
        return certificate

    def _load_with_owner(self, certificate_id: str) -> tuple[Certificate, str | None, str | None]:
        row = (
            self.db.query(Certificate, User.name, User.email)
            .outerjoin(User, User.id == Certificate.student_id)
            .filter(Certificate.id == certificate_id)
            .first()
        )
        if row is None:
            raise NotFound("Certificate not found.")
        certificate, owner_name, owner_email = row
        return certificate, owner_name, owner_email


def _parse_issued_date(value: date | str | None) -> date:
    if isinstance(value, date):
        return value
    if not value or not str(value).strip():
        raise ValidationError("Issue date is required.")
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid issue date '{value}'.") from exc


def _is_resolvable_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)
