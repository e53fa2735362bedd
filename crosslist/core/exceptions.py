from typing import List, Optional

from crosslist.core.enums import ErrorKind, Remediation


class BaseServiceError(Exception):
    """Base exception for all service-related errors."""
    kind: Optional[ErrorKind] = None
    retryable: bool = False
    remediation: Remediation = Remediation.NONE

    def __init__(self, message: str = "", *, platform: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.platform = platform

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value if self.kind else None,
            "message": self.message,
            "platform": self.platform,
            "retryable": self.retryable,
            "remediation": self.remediation.value,
        }


class ReconnectRequiredError(BaseServiceError):
    """Base exception for failures that only the user reconnecting can fix."""
    remediation = Remediation.RECONNECT


class NoActiveAccountError(ReconnectRequiredError):
    """Raised when a user has no active account on a platform."""
    kind = ErrorKind.NO_ACTIVE_ACCOUNT


class NoRefreshTokenError(ReconnectRequiredError):
    """Raised when a token has expired and there is no refresh token to renew it."""
    kind = ErrorKind.NO_REFRESH_TOKEN


class RefreshFailedError(ReconnectRequiredError):
    """Raised when the platform rejects a refresh token."""
    kind = ErrorKind.REFRESH_FAILED


class PlatformRequestFailedError(BaseServiceError):
    """Raised when a platform API call fails."""
    kind = ErrorKind.PLATFORM_REQUEST_FAILED

    def __init__(
        self,
        message: str = "",
        *,
        platform: Optional[str] = None,
        retryable: bool = True,
        remediation: Optional[Remediation] = None,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(message, platform=platform)
        self.retryable = retryable
        self.remediation = remediation or (
            Remediation.RETRY_LATER if retryable else Remediation.NONE
        )
        self.status_code = status_code
        self.error_code = error_code


class ValidationFailedError(BaseServiceError):
    """Raised when listing data is rejected, locally or by a platform."""
    kind = ErrorKind.VALIDATION_FAILED
    remediation = Remediation.FIX_DATA

    def __init__(self, message: str = "", *, platform: Optional[str] = None, problems: Optional[List[str]] = None):
        super().__init__(message, platform=platform)
        self.problems = list(problems or [])

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["problems"] = self.problems
        return data


class SyncInProgressError(BaseServiceError):
    """Raised when a sync is requested for a listing that is already syncing."""
    kind = ErrorKind.SYNC_IN_PROGRESS
    remediation = Remediation.RETRY_LATER


class ConflictUnresolvedError(BaseServiceError):
    """Raised when a losing platform listing could not be cancelled remotely."""
    kind = ErrorKind.CONFLICT_UNRESOLVED
    retryable = True
    remediation = Remediation.RETRY_LATER


class ListingNotFoundError(BaseServiceError):
    """Raised when a listing is not found."""
    pass


class InvalidSyncTransitionError(BaseServiceError):
    """Raised when a platform listing is moved to a sync status it cannot reach."""
    pass
