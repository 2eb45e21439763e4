"""Error codes and the HTTP-facing CDN error.

Codes are grouped by kind: 1xxx authorization, 2xxx file input, 3xxx
security, 5xxx storage, 9xxx general. Expected upload failures travel as
UploadOutcome values (services/upload_pipeline.py); CDNError is only raised
at the HTTP boundary, StorageError for filesystem faults.
"""
from enum import Enum


class ErrorCode(Enum):
    # Authorization
    AUTH_TOKEN_MISSING = (1001, "Upload token is required", 401)
    AUTH_TOKEN_INVALID = (1002, "Invalid or expired token", 401)
    AUTH_TOKEN_USED = (1003, "Token has already been used", 401)
    AUTH_TOKEN_EXPIRED = (1004, "Token has expired", 401)
    AUTH_TOKEN_INACTIVE = (1005, "Token is not active", 401)

    # File input
    FILE_NOT_PROVIDED = (2001, "No file provided", 400)
    FILE_TOO_LARGE = (2002, "File size exceeds maximum allowed size", 400)
    FILE_TYPE_NOT_ALLOWED = (2003, "File type is not allowed", 400)
    FILE_MIME_TYPE_MISMATCH = (2004, "File MIME type does not match extension", 400)
    FILE_NOT_FOUND = (2005, "File not found", 404)
    FILE_CATEGORY_MISMATCH = (2006, "File category does not match token restriction", 403)

    # Security
    SECURITY_MALWARE_DETECTED = (3001, "File failed security validation - potential malware detected", 400)
    SECURITY_PATH_TRAVERSAL = (3003, "Invalid file path detected", 400)
    SECURITY_VALIDATION_FAILED = (3004, "File security validation failed", 400)

    # Storage
    STORAGE_WRITE_FAILED = (5001, "Failed to write file to storage", 500)
    STORAGE_READ_FAILED = (5002, "Failed to read file from storage", 500)

    # General
    INTERNAL_SERVER_ERROR = (9001, "Internal server error", 500)
    INVALID_REQUEST = (9002, "Invalid request parameters", 400)
    RATE_LIMITED = (9003, "Too many requests", 429)

    def __init__(self, code: int, message: str, status_code: int):
        self.code = code
        self.message = message
        self.status_code = status_code


def format_message(error: ErrorCode, detail: str | None = None) -> str:
    """Default message for a code, with an optional detail appended."""
    return f"{error.message}: {detail}" if detail else error.message


class CDNError(Exception):
    """Raised by routes and dependencies; rendered by the app's exception handler."""

    def __init__(
        self,
        error: ErrorCode,
        detail: str | None = None,
        *,
        details: list[str] | None = None,
        headers: dict[str, str] | None = None,
    ):
        self.error = error
        self.details = details or []
        self.headers = headers
        super().__init__(format_message(error, detail))

    @property
    def status_code(self) -> int:
        return self.error.status_code


class StorageError(Exception):
    """Filesystem failure or an attempt to escape the storage root."""

    def __init__(self, error: ErrorCode, detail: str = ""):
        self.error = error
        super().__init__(format_message(error, detail))
