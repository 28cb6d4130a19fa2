"""Error taxonomy shared by services and the HTTP layer.

Services raise these; the application module maps them onto the
`{success, message, data}` envelope using `status_code`.
"""


class LearnhubError(Exception):
    status_code = 500

    def __init__(self, message: str, *, data: dict | None = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationError(LearnhubError, ValueError):
    status_code = 400


class NotFoundError(LearnhubError, LookupError):
    status_code = 404


class ConflictError(LearnhubError, ValueError):
    status_code = 409


class ForbiddenError(LearnhubError, PermissionError):
    status_code = 403


class DependencyError(LearnhubError, RuntimeError):
    """An external collaborator (PDF, storage, email) failed."""

    status_code = 502


class AuthenticationError(LearnhubError, PermissionError):
    status_code = 401
