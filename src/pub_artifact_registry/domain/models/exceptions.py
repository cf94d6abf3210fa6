from typing import Optional


class PackageRepositoryError(Exception):
    """Base error for everything the Pub API can report to a client.

    Every subclass carries the HTTP status and the Pub error ``code`` that the
    API layer puts into the ``{"error": {"code": ..., "message": ...}}`` body.
    """

    status_code = 500
    code = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ProtocolError(PackageRepositoryError):
    """Malformed request: bad content type, missing boundary, file or session"""

    status_code = 400
    code = "bad_request"


class ArchiveError(PackageRepositoryError):
    """Package archive or its pubspec.yaml could not be used"""

    status_code = 400
    code = "upload_error"


class NotFoundError(PackageRepositoryError):
    status_code = 404
    code = "not_found"


class PackageNotFoundError(NotFoundError):
    pass


class SessionNotFoundError(NotFoundError):
    code = "session_not_found"


class PublishError(PackageRepositoryError):
    status_code = 400
    code = "publish_error"


class ConflictError(PublishError):
    """The package version already exists in Artifact Registry"""


class UpstreamError(PackageRepositoryError):
    """Artifact Registry or Google authentication failure"""

    status_code = 502
    code = "upstream_error"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        details: Optional[str] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.details = details

    def __str__(self) -> str:
        text = self.message
        if self.upstream_status is not None:
            text += f" (Status: {self.upstream_status})"
        if self.details:
            text += f" - {self.details}"
        return text
