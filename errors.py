from typing import Optional


class ServiceError(ValueError):
    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Input that is well-formed but not acceptable, reported per field."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field

    def details(self) -> list[dict[str, str]]:
        return [{"field": self.field or "body", "message": self.message}]


class Unauthorized(ServiceError):
    status_code = 401


class NotFound(ServiceError):
    """Record is absent or belongs to another user; callers cannot tell which."""

    status_code = 404


class Conflict(ServiceError):
    status_code = 409
