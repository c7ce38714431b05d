# companion/errors.py
from typing import List, Optional


class CompanionError(Exception):
    """Base class for every error raised inside the companion backend."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationError(CompanionError):
    """Malformed or missing input. `issues` carries field-level detail."""

    def __init__(self, message: str, issues: Optional[List[str]] = None):
        super().__init__(message)
        self.issues = issues or []


class NotFoundError(CompanionError):
    pass


class ServiceError(CompanionError):
    """The local model backend is unreachable or answered with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code
        self.detail = detail


class StorageError(CompanionError):
    pass


class PromptAssemblyError(CompanionError):
    pass
