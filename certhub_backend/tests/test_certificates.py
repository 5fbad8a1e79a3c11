from contextlib import contextmanager
from datetime import date

import pytest
from sqlalchemy import event
from sqlalchemy.exc import OperationalError

from app.core.errors import AlreadyFinalized, Forbidden, NotFound, Unavailable, ValidationError
from app.models.audit import AuditAction, AuditLogEntry
from app.models.certificate import Certificate, CertificateStatus
from app.models.user import UserRole


def _entries(db, action):
    return db.query(AuditLogEntry).filter(AuditLogEntry.action == action).all()


# ── submit ────────────────────────────────────────────────────────────────────

def test_submit_creates_pending_certificate(submit, student):
    cert = submit()

    assert cert.status is CertificateStatus.PENDING
    assert cert.title == "Advanced React"
    assert cert.platform == "Coursera"
    assert cert.issued_date == date(2023, 11, 15)
    assert cert.student_id == student.id
    assert cert.verified_by is None
    assert cert.verified_at is None


def test_submit_records_upload_audit_entry(submit, db):
    cert = submit()

    entries = _entries(db, AuditAction.UPLOAD)
    assert len(entries) == 1
    assert cert.id in entries[0].details


def test_submit_uploads_payload_to_blob_storage(submit, storage, settings):
    cert = submit(file_url=None, payload="data:image/png;base64,iVBORw0KGgo=")

    assert storage.uploads == [("data:image/png;base64,iVBORw0KGgo=", settings.cloudinary_folder)]
    assert cert.file_url.startswith("https://files.test/")


def test_failed_upload_leaves_no_certificate(submit, storage, db):
    storage.fail = True

    with pytest.raises(Unavailable):
        submit(file_url=None, payload="data:image/png;base64,AAAA")

    assert db.query(Certificate).count() == 0


@pytest.mark.parametrize(
    "overrides",
    [
        {"title": "  "},
        {"platform": ""},
        {"issued_date": ""},
        {"issued_date": "15/11/2023"},
        {"file_url": None},
        {"file_url": "not-a-url"},
        {"file_url": "ftp://files.test/cert.png"},
    ],
)
def test_submit_rejects_bad_input(submit, db, overrides):
    with pytest.raises(ValidationError):
        submit(**overrides)
    assert db.query(Certificate).count() == 0


def test_student_cannot_submit_for_someone_else(submit, make_user):
    other = make_user(UserRole.STUDENT)
    intruder = make_user(UserRole.STUDENT)

    with pytest.raises(Forbidden):
        submit(owner=intruder, student_id=other.id)


def test_admin_can_submit_on_behalf_of_student(submit, admin, student):
    cert = submit(owner=admin, student_id=student.id)
    assert cert.student_id == student.id


def test_submit_requires_existing_student(submit, admin, teacher):
    with pytest.raises(ValidationError):
        submit(owner=admin, student_id="missing")
    with pytest.raises(ValidationError):
        submit(owner=admin, student_id=teacher.id)


# ── transition ────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("reviewer", ["teacher", "admin"])
def test_verify_sets_reviewer_fields_and_audits_once(request, submit, lifecycle, db, reviewer):
    actor = request.getfixturevalue(reviewer)
    cert = submit()

    result = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, actor)

    assert result.status is CertificateStatus.VERIFIED
    assert result.verified_by == actor.id
    assert result.verified_at is not None
    assert result.remarks == ""
    assert len(_entries(db, AuditAction.VERIFY)) == 1


def test_reject_with_remarks(submit, lifecycle, teacher, db, notifier, student):
    cert = submit()

    result = lifecycle.transition(cert.id, CertificateStatus.REJECTED, teacher, remarks="Blurry scan")

    assert result.status is CertificateStatus.REJECTED
    assert result.remarks == "Blurry scan"
    assert result.verified_by == teacher.id
    entries = _entries(db, AuditAction.REJECT)
    assert len(entries) == 1
    assert cert.id in entries[0].details

    assert len(notifier.sent) == 1
    mail = notifier.sent[0]
    assert mail["to"] == student.email
    assert mail["subject"] == "Certificate REJECTED: Advanced React"
    assert "Blurry scan" in mail["text"]


def test_student_cannot_transition(submit, lifecycle, student, db):
    cert = submit()

    with pytest.raises(Forbidden):
        lifecycle.transition(cert.id, CertificateStatus.VERIFIED, student)

    db.expire_all()
    stored = db.get(Certificate, cert.id)
    assert stored.status is CertificateStatus.PENDING
    assert stored.verified_by is None
    assert _entries(db, AuditAction.VERIFY) == []


def test_transition_unknown_certificate(lifecycle, teacher):
    with pytest.raises(NotFound):
        lifecycle.transition("does-not-exist", CertificateStatus.VERIFIED, teacher)


def test_transition_back_to_pending_is_invalid(submit, lifecycle, teacher):
    cert = submit()
    with pytest.raises(ValidationError):
        lifecycle.transition(cert.id, CertificateStatus.PENDING, teacher)


def test_transition_survives_mail_failure(submit, lifecycle, teacher, notifier, db):
    cert = submit()
    notifier.fail = True

    result = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    assert result.status is CertificateStatus.VERIFIED
    db.expire_all()
    assert db.get(Certificate, cert.id).status is CertificateStatus.VERIFIED
    assert len(_entries(db, AuditAction.VERIFY)) == 1


def test_transition_survives_audit_failure(submit, lifecycle, audit, teacher, notifier, db, monkeypatch):
    cert = submit()

    def broken_write(*args, **kwargs):
        raise OperationalError("INSERT INTO audit_logs", {}, Exception("audit store down"))

    monkeypatch.setattr(audit, "_write", broken_write)

    result = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    assert result.status is CertificateStatus.VERIFIED
    db.expire_all()
    assert db.get(Certificate, cert.id).status is CertificateStatus.VERIFIED
    assert _entries(db, AuditAction.VERIFY) == []
    assert len(notifier.sent) == 1


def test_repeating_the_same_transition_is_a_quiet_no_op(submit, lifecycle, teacher, admin, db, notifier):
    cert = submit()
    lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    again = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, admin)

    assert again.status is CertificateStatus.VERIFIED
    assert again.verified_by == teacher.id
    assert len(_entries(db, AuditAction.VERIFY)) == 1
    assert len(notifier.sent) == 1


def test_opposite_transition_on_finalized_certificate_conflicts(submit, lifecycle, teacher, admin, db):
    cert = submit()
    lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    with pytest.raises(AlreadyFinalized):
        lifecycle.transition(cert.id, CertificateStatus.REJECTED, admin, remarks="late objection")

    db.expire_all()
    stored = db.get(Certificate, cert.id)
    assert stored.status is CertificateStatus.VERIFIED
    assert stored.verified_by == teacher.id
    assert _entries(db, AuditAction.REJECT) == []


def test_retransition_flag_restores_overwrite(submit, lifecycle, settings, teacher, admin, db, notifier):
    settings.allow_retransition = True
    cert = submit()
    lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    result = lifecycle.transition(cert.id, CertificateStatus.REJECTED, admin, remarks="Revoked")

    assert result.status is CertificateStatus.REJECTED
    assert result.verified_by == admin.id
    assert result.remarks == "Revoked"
    assert len(_entries(db, AuditAction.REJECT)) == 1
    assert len(notifier.sent) == 2


def test_class_scoped_review(submit, lifecycle, settings, roster, teacher, admin, make_user, student):
    settings.class_scoped_review = True
    outsider = make_user(UserRole.TEACHER)
    classroom = roster.create_class("Batch A", "CS101", teacher.id)
    roster.enroll(classroom.id, {student.id})
    first, second = submit(), submit(title="Machine Learning A-Z", platform="Udemy")

    with pytest.raises(Forbidden):
        lifecycle.transition(first.id, CertificateStatus.VERIFIED, outsider)

    assert lifecycle.transition(first.id, CertificateStatus.VERIFIED, teacher).status is CertificateStatus.VERIFIED
    assert lifecycle.transition(second.id, CertificateStatus.REJECTED, admin).status is CertificateStatus.REJECTED


# ── datastore outages and concurrent reviews ──────────────────────────────────

@contextmanager
def _failing_statements(engine, should_fail):
    """Make every statement for which ``should_fail(sql)`` is true raise like a dropped connection."""

    def fail(conn, cursor, statement, parameters, context, executemany):
        if should_fail(statement):
            raise OperationalError(statement, parameters, Exception("server closed the connection"))

    event.listen(engine, "before_cursor_execute", fail)
    try:
        yield
    finally:
        event.remove(engine, "before_cursor_execute", fail)


def test_transition_result_survives_outage_after_commit(
    submit, lifecycle, teacher, student, notifier, engine, db, caplog
):
    cert = submit()
    committed = []

    def after_status_write(statement):
        if committed:
            return True
        if statement.startswith("UPDATE certificates"):
            committed.append(statement)
        return False

    with _failing_statements(engine, after_status_write):
        result = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher, remarks="Looks good")

    assert result.status is CertificateStatus.VERIFIED
    assert result.verified_by == teacher.id
    assert result.remarks == "Looks good"
    assert notifier.sent[0]["to"] == student.email
    assert "Audit write failed" in caplog.text
    db.expire_all()
    assert db.get(Certificate, cert.id).status is CertificateStatus.VERIFIED
    assert _entries(db, AuditAction.VERIFY) == []


def test_review_write_outage_is_unavailable(submit, lifecycle, teacher, notifier, engine, db):
    cert = submit()

    with _failing_statements(engine, lambda sql: sql.startswith("UPDATE certificates")):
        with pytest.raises(Unavailable):
            lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    db.expire_all()
    assert db.get(Certificate, cert.id).status is CertificateStatus.PENDING
    assert notifier.sent == []


def test_reads_during_outage_are_unavailable(submit, lifecycle, teacher, engine):
    cert = submit()

    with _failing_statements(engine, lambda sql: True):
        with pytest.raises(Unavailable):
            lifecycle.list_for(teacher)
        with pytest.raises(Unavailable):
            lifecycle.public_view(cert.id)
        with pytest.raises(Unavailable):
            lifecycle.stats(teacher)
        with pytest.raises(Unavailable):
            lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)


def _review_elsewhere_first(monkeypatch, lifecycle, session_factory, change):
    """Run ``change`` in another session after the row is read and before the status write."""
    check_scope = lifecycle._check_review_scope

    def interleaved(actor, certificate):
        check_scope(actor, certificate)
        other = session_factory()
        try:
            change(other.query(Certificate).filter(Certificate.id == certificate.id))
            other.commit()
        finally:
            other.close()

    monkeypatch.setattr(lifecycle, "_check_review_scope", interleaved)


def test_losing_a_race_to_the_opposite_decision_conflicts(
    submit, lifecycle, teacher, admin, session_factory, monkeypatch, db, notifier
):
    cert = submit()
    _review_elsewhere_first(
        monkeypatch, lifecycle, session_factory,
        lambda rows: rows.update(
            {"status": CertificateStatus.REJECTED, "verified_by": admin.id}, synchronize_session=False
        ),
    )

    with pytest.raises(AlreadyFinalized):
        lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    db.expire_all()
    stored = db.get(Certificate, cert.id)
    assert stored.status is CertificateStatus.REJECTED
    assert stored.verified_by == admin.id
    assert _entries(db, AuditAction.VERIFY) == []
    assert notifier.sent == []


def test_losing_a_race_to_the_same_decision_is_a_no_op(
    submit, lifecycle, teacher, admin, session_factory, monkeypatch, db, notifier
):
    cert = submit()
    _review_elsewhere_first(
        monkeypatch, lifecycle, session_factory,
        lambda rows: rows.update(
            {"status": CertificateStatus.VERIFIED, "verified_by": admin.id}, synchronize_session=False
        ),
    )

    result = lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    assert result.status is CertificateStatus.VERIFIED
    assert result.verified_by == admin.id
    assert _entries(db, AuditAction.VERIFY) == []
    assert notifier.sent == []


def test_certificate_deleted_mid_review(submit, lifecycle, teacher, session_factory, monkeypatch):
    cert = submit()
    _review_elsewhere_first(
        monkeypatch, lifecycle, session_factory,
        lambda rows: rows.delete(synchronize_session=False),
    )

    with pytest.raises(NotFound):
        lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)


# ── delete ────────────────────────────────────────────────────────────────────

def test_owner_deletes_own_certificate(submit, lifecycle, student, db):
    cert = submit()

    lifecycle.delete(cert.id, student)

    assert db.get(Certificate, cert.id) is None
    assert len(_entries(db, AuditAction.DELETE_CERT)) == 1


def test_admin_deletes_any_certificate(submit, lifecycle, admin, db):
    cert = submit()
    lifecycle.delete(cert.id, admin)
    assert db.get(Certificate, cert.id) is None


@pytest.mark.parametrize("who", ["teacher", "other_student"])
def test_delete_forbidden_for_non_owners(submit, lifecycle, make_user, teacher, db, who):
    cert = submit()
    actor = teacher if who == "teacher" else make_user(UserRole.STUDENT)

    with pytest.raises(Forbidden):
        lifecycle.delete(cert.id, actor)

    assert db.get(Certificate, cert.id) is not None
    assert _entries(db, AuditAction.DELETE_CERT) == []


def test_delete_unknown_certificate(lifecycle, admin):
    with pytest.raises(NotFound):
        lifecycle.delete("nope", admin)


# ── reads ─────────────────────────────────────────────────────────────────────

def test_students_only_see_their_own(submit, lifecycle, make_user, student, teacher):
    other = make_user(UserRole.STUDENT)
    mine = submit()
    submit(owner=other)

    assert [c.id for c in lifecycle.list_for(student)] == [mine.id]
    assert len(lifecycle.list_for(teacher)) == 2
    with pytest.raises(Forbidden):
        lifecycle.list_for(student, student_id=other.id)


def test_list_filters_by_status(submit, lifecycle, teacher):
    verified = submit()
    submit(title="Machine Learning A-Z")
    lifecycle.transition(verified.id, CertificateStatus.VERIFIED, teacher)

    result = lifecycle.list_for(teacher, status=CertificateStatus.VERIFIED)

    assert [c.id for c in result] == [verified.id]


def test_scoped_teacher_lists_only_class_students(submit, lifecycle, settings, roster, teacher, make_user, student):
    settings.class_scoped_review = True
    other = make_user(UserRole.STUDENT)
    classroom = roster.create_class("Batch A", "CS101", teacher.id)
    roster.enroll(classroom.id, [student.id])
    mine = submit()
    submit(owner=other)

    assert [c.id for c in lifecycle.list_for(teacher)] == [mine.id]


def test_get_enforces_ownership(submit, lifecycle, make_user, student, teacher):
    cert = submit()
    assert lifecycle.get(cert.id, student).id == cert.id
    assert lifecycle.get(cert.id, teacher).id == cert.id
    with pytest.raises(Forbidden):
        lifecycle.get(cert.id, make_user(UserRole.STUDENT))


def test_public_view_of_verified_certificate(submit, lifecycle, teacher, student):
    cert = submit()
    lifecycle.transition(cert.id, CertificateStatus.VERIFIED, teacher)

    view = lifecycle.public_view(cert.id)

    assert view["status"] is CertificateStatus.VERIFIED
    assert view["student_name"] == student.name
    assert view["title"] == "Advanced React"
    assert view["verified_by"] == teacher.id
    assert view["verifier_name"] == teacher.name


def test_public_view_unknown_id(lifecycle):
    with pytest.raises(NotFound):
        lifecycle.public_view("0" * 32)


def test_stats_count_statuses_and_platforms(submit, lifecycle, teacher, admin):
    first = submit()
    submit(title="Machine Learning A-Z", platform="Udemy")
    submit(title="Deep Learning", platform="Coursera")
    lifecycle.transition(first.id, CertificateStatus.VERIFIED, teacher)

    stats = lifecycle.stats(admin)

    assert stats["total"] == 3
    assert stats["by_status"] == {"PENDING": 2, "VERIFIED": 1, "REJECTED": 0}
    assert stats["by_platform"] == {"Coursera": 2, "Udemy": 1}
