"""
Shared enums and constants used across the application.
"""

from enum import Enum


class ListingStatus(str, Enum):
    """Lifecycle of a listing, both the master record and each platform copy"""
    DRAFT = "draft"
    ACTIVE = "active"
    SOLD = "sold"
    ENDED = "ended"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"


SYNC_TRANSITIONS = {
    SyncStatus.PENDING: {SyncStatus.SYNCED, SyncStatus.ERROR},
    SyncStatus.SYNCED: {SyncStatus.PENDING, SyncStatus.CONFLICT},
    SyncStatus.ERROR: {SyncStatus.PENDING},
    SyncStatus.CONFLICT: {SyncStatus.SYNCED, SyncStatus.CANCELLED},
    SyncStatus.CANCELLED: set(),
}


class ErrorKind(str, Enum):
    """Failure taxonomy shared by every platform"""
    NO_ACTIVE_ACCOUNT = "no_active_account"
    NO_REFRESH_TOKEN = "no_refresh_token"
    REFRESH_FAILED = "refresh_failed"
    PLATFORM_REQUEST_FAILED = "platform_request_failed"
    VALIDATION_FAILED = "validation_failed"
    SYNC_IN_PROGRESS = "sync_in_progress"
    CONFLICT_UNRESOLVED = "conflict_unresolved"


class Remediation(str, Enum):
    RECONNECT = "reconnect"
    FIX_DATA = "fix_data"
    RETRY_LATER = "retry_later"
    NONE = "none"


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SyncJobStatus(str, Enum):
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
