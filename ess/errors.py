class EssError(Exception):
    """Base error carrying a taxonomy kind and the HTTP status it maps to."""

    kind = "internal"
    status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_envelope(self) -> dict:
        return {"error": self.message, "status": self.status}


class ValidationError(EssError, ValueError):
    kind = "validation"
    status = 400


class AuthenticationError(EssError):
    kind = "authentication"
    status = 401


class AuthorizationError(EssError, PermissionError):
    kind = "authorization"
    status = 403

    def __init__(self, message: str, *, rule: str | None = None):
        super().__init__(message)
        self.rule = rule


class NotFoundError(EssError, LookupError):
    kind = "not_found"
    status = 404


class ConflictError(EssError):
    kind = "conflict"
    status = 409


class DependencyError(EssError):
    kind = "dependency"
    status = 502


class InternalError(EssError):
    kind = "internal"
    status = 500
