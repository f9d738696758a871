"""Domain errors raised by the orchestration layer.

Each error carries the HTTP status it maps to and a stable ``code`` that
clients switch on to pick the notice they show (``RESUME_REQUIRED``,
``ALREADY_APPLIED`` ...). The FastAPI handler in ``main`` renders them as
``{"detail": ..., "code": ...}``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import status


class JobBoardError(Exception):
    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "ERROR"
    default_message: str = "Request failed"

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# --- Validation (checked before any storage or network call) ---
class ValidationFailed(JobBoardError):
    code = "VALIDATION_ERROR"


class InvalidFileType(ValidationFailed):
    code = "INVALID_FILE_TYPE"
    default_message = "Please upload a PDF, DOC, or DOCX file"


class FileTooLarge(ValidationFailed):
    code = "FILE_TOO_LARGE"
    default_message = "File size must be less than 10MB"


class PasswordMismatch(ValidationFailed):
    code = "PASSWORD_MISMATCH"
    default_message = "Passwords do not match"


class PasswordTooShort(ValidationFailed):
    code = "PASSWORD_TOO_SHORT"
    default_message = "Password must be at least 6 characters long"


# --- Preconditions ---
class ResumeRequiredError(JobBoardError):
    code = "RESUME_REQUIRED"
    default_message = "Please upload your resume before applying."


class DuplicateApplicationError(JobBoardError):
    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_APPLIED"
    default_message = "You have already applied to this job!"


class DuplicateSavedJobError(JobBoardError):
    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_SAVED"
    default_message = "You have already saved this job."


class AlreadyRegisteredError(JobBoardError):
    status_code = status.HTTP_409_CONFLICT
    code = "ALREADY_REGISTERED"
    default_message = "Email already registered"


class MissingResumeFile(JobBoardError):
    code = "NO_RESUME"
    default_message = "No resume found for this applicant"


class RequestInFlight(JobBoardError):
    status_code = status.HTTP_409_CONFLICT
    code = "REQUEST_IN_FLIGHT"
    default_message = "A request for this item is already in progress"


# --- Lookup / authorization ---
class NotFoundError(JobBoardError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NOT_FOUND"
    default_message = "Not found"


class ForbiddenError(JobBoardError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "FORBIDDEN"
    default_message = "You are not allowed to perform this action"


# --- Configuration and remote failures ---
class AtsNotConfiguredError(JobBoardError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "ATS_NOT_CONFIGURED"
    default_message = "ATS API URL not configured"


class AtsRemoteError(JobBoardError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "ATS_REMOTE_ERROR"
    default_message = "Failed to calculate ATS score"

    def __init__(
        self,
        message: Optional[str] = None,
        response_status: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        self.response_status = response_status
        self.body = body
        if message is None and response_status is not None:
            message = f"ATS API error ({response_status}): {body or ''}"
        super().__init__(message)


class PersistenceError(JobBoardError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DATABASE_ERROR"
    default_message = "Failed to save changes"


class StorageError(JobBoardError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "STORAGE_ERROR"
    default_message = "Storage operation failed"
