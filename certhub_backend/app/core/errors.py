"""
Domain errors raised by the service layer.

Each error carries the HTTP status the API boundary answers with, so routes
never translate them by hand. ``Unavailable`` is the only retryable one.
"""


class CertHubError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(CertHubError):
    status_code = 422


class Unauthorized(CertHubError):
    status_code = 401


class Forbidden(CertHubError):
    status_code = 403


class NotFound(CertHubError):
    status_code = 404


class Conflict(CertHubError):
    status_code = 409


class AlreadyFinalized(Conflict):
    """The certificate already carries a different terminal status."""


class Unavailable(CertHubError):
    """A datastore, blob store or mail call failed or timed out."""

    status_code = 503
