"""Domain exceptions. Routers translate these into HTTP responses."""

from __future__ import annotations


class AcademyError(Exception):
    """Base class for domain errors."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AcademyError):
    status_code = 400


class AuthenticationRequired(AcademyError):
    status_code = 401


class ForbiddenError(AcademyError):
    status_code = 403


class NotFoundError(AcademyError):
    status_code = 404


class ConflictError(AcademyError):
    status_code = 409


class UpstreamError(AcademyError):
    """An external provider (payment gateway, video host) failed or was unreachable."""

    status_code = 502

    def __init__(self, message: str, *, provider: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status
