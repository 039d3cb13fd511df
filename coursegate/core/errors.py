"""Error taxonomy for the entitlement core.

AppError codes double as message ids in the shared message table, so any
raised error can be turned into a localized user message without a second
mapping.
"""

from typing import Optional


class AppError(Exception):
    code = "app_error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class EmailError(AppError, ValueError):
    code = "invalid_email"


class FormatError(AppError, ValueError):
    code = "invalid_key_format"


class UsageError(AppError):
    code = "key_already_used"


class ValidityError(AppError):
    code = "invalid_key"


class StorageError(AppError):
    """Primary and secondary stores both failed."""
    code = "storage_error"


class ActivationError(AppError):
    """Entitlement write could not be verified."""
    code = "activation_failed"


class StoreUnavailableError(AppError):
    """Raised by a concrete store when it cannot serve a call."""
    code = "storage_error"


class StoreQuotaError(StoreUnavailableError):
    code = "storage_quota_exceeded"


class StoreSecurityError(StoreUnavailableError):
    code = "security_error"


def classify_store_error(exc: BaseException) -> str:
    """Map a store fault onto its message id (quota / security / generic)."""
    if isinstance(exc, StoreQuotaError):
        return StoreQuotaError.code
    if isinstance(exc, StoreSecurityError):
        return StoreSecurityError.code
    text = str(exc).lower()
    if "quota" in text or "disk is full" in text:
        return StoreQuotaError.code
    if "permission" in text or "readonly" in text or "read-only" in text:
        return StoreSecurityError.code
    if isinstance(exc, StoreUnavailableError):
        return StoreUnavailableError.code
    return "validation_error"


class SubmissionInProgressError(AppError):
    """A second submission arrived while one is still running."""
    code = "submission_in_progress"


class ActivationCancelledError(AppError):
    code = "activation_cancelled"


def classify_unexpected_error(exc: BaseException) -> str:
    """Message id for an unexpected workflow fault."""
    if isinstance(exc, AppError):
        return exc.code
    if isinstance(exc, PermissionError):
        return StoreSecurityError.code
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return "network_error"
    return ActivationError.code
