"""Incident Hub exception hierarchy."""


class IncidentHubError(Exception):
    """Base exception for all Incident Hub errors."""

    status_code = 500

    def __init__(self, message: str = "", code: str = "INCIDENT_HUB_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ValidationError(IncidentHubError):
    """Raised when required fields are missing or malformed."""

    status_code = 400

    def __init__(self, message: str = "Invalid request"):
        super().__init__(message, code="VALIDATION_ERROR")


class UnauthorizedError(IncidentHubError):
    """Raised for missing, invalid or expired credentials."""

    status_code = 401

    def __init__(self, message: str = "Not authorized", code: str = "UNAUTHORIZED"):
        super().__init__(message, code=code)


class InvalidTokenError(UnauthorizedError):
    """Raised when a token fails signature, shape or type checks."""

    def __init__(self, message: str = "Invalid token"):
        super().__init__(message, code="INVALID_TOKEN")


class TokenExpiredError(UnauthorizedError):
    """Raised when a token is past its expiry."""

    def __init__(self, message: str = "Token expired"):
        super().__init__(message, code="TOKEN_EXPIRED")


class RefreshTokenReuseError(UnauthorizedError):
    """Raised when a presented refresh token does not match the stored session.

    The stored session has already been revoked by the time this is raised.
    """

    def __init__(self, message: str = "Refresh token reuse detected"):
        super().__init__(message, code="REFRESH_TOKEN_REUSE")


class ForbiddenError(IncidentHubError):
    """Raised on role mismatch, ownership violation or a blocked account."""

    status_code = 403

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message, code="FORBIDDEN")


class NotFoundError(IncidentHubError):
    """Raised when an entity is missing or its id is malformed."""

    status_code = 404

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, code="NOT_FOUND")


class ConflictError(IncidentHubError):
    """Raised on a uniqueness violation such as a duplicate email."""

    status_code = 409

    def __init__(self, message: str = "Conflict"):
        super().__init__(message, code="CONFLICT")
