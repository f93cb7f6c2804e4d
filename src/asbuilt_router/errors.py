from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from asbuilt_router.schemas import ValidationResult


@dataclass
class ApiError(Exception):
    code: str
    message: str
    status_code: int

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)


class AuthError(ApiError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code="UNAUTHORIZED", message=message, status_code=401)


class SubmissionNotFoundError(ApiError):
    def __init__(self, submission_id: str) -> None:
        super().__init__(
            code="SUBMISSION_NOT_FOUND",
            message=f"Submission not found: {submission_id}",
            status_code=404,
        )
        self.submission_id = submission_id


class SubmissionBusyError(ApiError):
    def __init__(self, submission_id: str, status: str | None = None) -> None:
        detail = f" (status {status})" if status else ""
        super().__init__(
            code="SUBMISSION_BUSY",
            message=f"Submission is still being processed: {submission_id}{detail}",
            status_code=409,
        )
        self.submission_id = submission_id


class SubmissionValidationError(ApiError):
    def __init__(
        self,
        validation: ValidationResult,
        message: str = "Submission failed pre-flight quality validation",
    ) -> None:
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=422)
        self.validation = validation


class UnsupportedUploadError(ApiError):
    def __init__(self, message: str = "Upload must be a readable PDF job package") -> None:
        super().__init__(code="VALIDATION_ERROR", message=message, status_code=422)


class UploadTooLargeError(ApiError):
    def __init__(self, message: str = "Upload exceeds the configured size limit") -> None:
        super().__init__(code="UPLOAD_TOO_LARGE", message=message, status_code=413)
