from app.models.audit import AuditAction, AuditLogEntry  # noqa: F401
from app.models.certificate import Certificate, CertificateStatus  # noqa: F401
from app.models.classroom import Classroom, Enrollment  # noqa: F401
from app.models.platform import Platform  # noqa: F401
from app.models.user import STAFF_ROLES, User, UserRole  # noqa: F401
