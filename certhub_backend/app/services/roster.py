import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.core.database import commit_or_raise, datastore_errors
from app.core.errors import Conflict, NotFound, ValidationError
from app.models.classroom import Classroom, Enrollment
from app.models.user import STAFF_ROLES, User, UserRole

logger = logging.getLogger(__name__)

_ENROLL_ATTEMPTS = 3


class Roster:
    """Teacher -> class -> students graph used to scope certificate review."""

    def __init__(self, db: Session, settings: Settings):
        self.db = db
        self.settings = settings

    def create_class(self, name: str, course_name: str, teacher_id: str) -> Classroom:
        name = (name or "").strip()
        course_name = (course_name or "").strip()
        if not name or not course_name:
            raise ValidationError("Class name and course name are required.")
        with datastore_errors(self.db):
            teacher = self.db.get(User, teacher_id)
        if teacher is None or teacher.role not in STAFF_ROLES:
            raise ValidationError(f"Teacher '{teacher_id}' does not exist.")
        classroom = Classroom(name=name, course_name=course_name, teacher_id=teacher.id)
        self.db.add(classroom)
        commit_or_raise(self.db, f"Class '{name}' already exists.")
        return classroom

    def get_class(self, class_id: str) -> Classroom:
        with datastore_errors(self.db):
            classroom = self.db.get(Classroom, class_id)
        if classroom is None:
            raise NotFound("Class not found.")
        return classroom

    def enroll(self, class_id: str, student_ids: set[str] | list[str]) -> int:
        """Idempotent bulk enrollment. Returns how many new rows were written."""
        self.get_class(class_id)
        wanted = {sid for sid in student_ids if sid}
        if not wanted:
            return 0
        with datastore_errors(self.db):
            students = (
                self.db.query(User.id)
                .filter(User.id.in_(wanted), User.role == UserRole.STUDENT)
                .all()
            )
        unknown = wanted - {row.id for row in students}
        if unknown:
            raise ValidationError(f"Not students: {', '.join(sorted(unknown))}")

        for _ in range(_ENROLL_ATTEMPTS):
            fresh = sorted(wanted - self._enrolled(class_id, wanted))
            if not fresh:
                return 0
            for student_id in fresh:
                self.db.add(Enrollment(class_id=class_id, student_id=student_id))
            try:
                commit_or_raise(self.db, "Enrollment already exists.")
            except Conflict:
                # A concurrent enroll wrote some of the same pairs; re-read and keep the rest.
                logger.info("Concurrent enrollment in class %s; retrying", class_id)
                continue
            return len(fresh)
        raise Conflict("Enrollment kept conflicting with concurrent writes; retry.")

    def list_classes(self, teacher_id: str | None = None) -> list[dict]:
        counts = (
            self.db.query(Enrollment.class_id, func.count(Enrollment.id).label("n"))
            .group_by(Enrollment.class_id)
            .subquery()
        )
        query = (
            self.db.query(Classroom, User.name, counts.c.n)
            .join(User, User.id == Classroom.teacher_id, isouter=True)
            .join(counts, counts.c.class_id == Classroom.id, isouter=True)
        )
        if teacher_id:
            query = query.filter(Classroom.teacher_id == teacher_id)
        with datastore_errors(self.db):
            rows = query.order_by(Classroom.name).all()
        return [
            {
                "id": classroom.id,
                "name": classroom.name,
                "course_name": classroom.course_name,
                "teacher_id": classroom.teacher_id,
                "teacher_name": teacher_name,
                "student_count": count or 0,
                "created_at": classroom.created_at,
            }
            for classroom, teacher_name, count in rows
        ]

    def class_students(self, class_id: str) -> list[User]:
        self.get_class(class_id)
        with datastore_errors(self.db):
            return (
                self.db.query(User)
                .join(Enrollment, Enrollment.student_id == User.id)
                .filter(Enrollment.class_id == class_id)
                .order_by(User.name)
                .all()
            )

    def teaches_student(self, teacher_id: str, student_id: str) -> bool:
        with datastore_errors(self.db):
            return (
                self.db.query(Enrollment.id)
                .join(Classroom, Classroom.id == Enrollment.class_id)
                .filter(Classroom.teacher_id == teacher_id, Enrollment.student_id == student_id)
                .first()
                is not None
            )

    def students_of(self, teacher_id: str):
        """Subquery of student ids enrolled in any class the teacher owns."""
        return (
            self.db.query(Enrollment.student_id)
            .join(Classroom, Classroom.id == Enrollment.class_id)
            .filter(Classroom.teacher_id == teacher_id)
        )

    def check_registration_class(self, class_name: str | None) -> None:
        """Reject registration against an unknown class when implicit creation is off."""
        if not class_name or self.settings.auto_create_classes:
            return
        if self._find_by_name(class_name) is None:
            raise ValidationError(f"Class '{class_name}' does not exist.")

    def sync_registration(self, student: User, class_name: str | None) -> Classroom | None:
        """Enroll a newly registered student in the class they named.

        A missing class is created on the fly, owned by the longest-standing
        teacher (or admin when there are no teachers).
        """
        if not class_name or not class_name.strip():
            return None
        classroom = self._find_by_name(class_name)
        if classroom is None:
            if not self.settings.auto_create_classes:
                raise ValidationError(f"Class '{class_name}' does not exist.")
            owner = self._default_owner()
            if owner is None:
                logger.warning(
                    "No staff member to own class %r; %s registered without enrollment",
                    class_name, student.id,
                )
                return None
            classroom = self.create_class(class_name, class_name, owner.id)
            logger.info("Created class %r for %s under %s", class_name, student.id, owner.id)
        self.enroll(classroom.id, {student.id})
        return classroom

    def remove_student(self, student_id: str) -> int:
        """Delete a student's enrollments. The caller commits."""
        with datastore_errors(self.db):
            return (
                self.db.query(Enrollment)
                .filter(Enrollment.student_id == student_id)
                .delete(synchronize_session=False)
            )

    def owns_classes(self, teacher_id: str) -> bool:
        with datastore_errors(self.db):
            return self.db.query(Classroom.id).filter(Classroom.teacher_id == teacher_id).first() is not None

    def _enrolled(self, class_id: str, student_ids: set[str]) -> set[str]:
        with datastore_errors(self.db):
            rows = (
                self.db.query(Enrollment.student_id)
                .filter(Enrollment.class_id == class_id, Enrollment.student_id.in_(student_ids))
                .all()
            )
        return {row.student_id for row in rows}

    def _find_by_name(self, class_name: str) -> Classroom | None:
        with datastore_errors(self.db):
            return self.db.query(Classroom).filter(Classroom.name == class_name.strip()).first()

    def _default_owner(self) -> User | None:
        with datastore_errors(self.db):
            for role in (UserRole.TEACHER, UserRole.ADMIN):
                owner = (
                    self.db.query(User)
                    .filter(User.role == role)
                    .order_by(User.created_at, User.id)
                    .first()
                )
                if owner is not None:
                    return owner
        return None
