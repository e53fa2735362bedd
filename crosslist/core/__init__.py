"""
Core module exports.
"""
from .enums import (
    ListingStatus,
    SyncStatus,
    ErrorKind,
    Remediation,
    Confidence,
    SyncJobStatus,
)

from .exceptions import (
    BaseServiceError,
    ReconnectRequiredError,
    NoActiveAccountError,
    NoRefreshTokenError,
    RefreshFailedError,
    PlatformRequestFailedError,
    ValidationFailedError,
    SyncInProgressError,
    ConflictUnresolvedError,
    ListingNotFoundError,
    InvalidSyncTransitionError,
)
