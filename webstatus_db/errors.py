from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_CURSOR_FORMAT = "invalid_cursor_format"
    INVALID_INPUT = "invalid_input"
    INTERNAL_QUERY_FAILURE = "internal_query_failure"
    MISSING_REQUIRED_ROLE = "missing_required_role"
    LIMIT_EXCEEDED = "limit_exceeded"
    MUTATION_LIMIT_EXCEEDED = "mutation_limit_exceeded"
    CANCELLED = "cancelled"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    BATCH_WRITE_FAILED = "batch_write_failed"
    SYNC_READ_FAILED = "sync_read_failed"
    SYNC_MUTATION_CREATION_FAILED = "sync_mutation_creation_failed"
    SYNC_ATOMIC_WRITE_FAILED = "sync_atomic_write_failed"
    SYNC_BATCH_WRITE_FAILED = "sync_batch_write_failed"
    SYNC_FAILED_TO_GET_CHILD_MUTATIONS = "sync_failed_to_get_child_mutations"
    ALREADY_LOCKED = "already_locked"
    LOCK_NOT_OWNED = "lock_not_owned"


class WebstatusDbError(Exception):
    """Base exception for webstatus_db errors."""

    kind: ErrorKind = ErrorKind.INTERNAL_QUERY_FAILURE
    default_message = "webstatus_db error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def cause(self) -> BaseException | None:
        """The wrapped lower-level exception, if any."""
        return self.__cause__


class QueryReturnedNoResultsError(WebstatusDbError):
    """A query that should have returned one row returned none."""

    kind = ErrorKind.NOT_FOUND
    default_message = "query returned no results"


class InternalQueryFailureError(WebstatusDbError):
    """Any unexpected database-layer failure."""

    kind = ErrorKind.INTERNAL_QUERY_FAILURE
    default_message = "internal query failure"


class InvalidCursorFormatError(WebstatusDbError):
    """Pagination token is malformed or semantically invalid."""

    kind = ErrorKind.INVALID_CURSOR_FORMAT
    default_message = "invalid cursor format"


class InvalidInputError(WebstatusDbError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "invalid input"


class MissingRequiredRoleError(WebstatusDbError):
    """The resource exists but the caller lacks the required relationship to it."""

    kind = ErrorKind.MISSING_REQUIRED_ROLE
    default_message = "user is missing required role"


class LimitExceededError(WebstatusDbError):
    kind = ErrorKind.LIMIT_EXCEEDED
    default_message = "limit exceeded"


class OwnerSavedSearchLimitExceededError(LimitExceededError):
    default_message = "saved search limit reached"


class UserSearchBookmarkLimitExceededError(LimitExceededError):
    default_message = "user bookmark limit reached"


class OwnerCannotDeleteBookmarkError(InvalidInputError):
    default_message = "user is the owner of the saved search and cannot delete the bookmark"


class MutationLimitExceededError(WebstatusDbError):
    """A transaction buffered more mutations than the database accepts."""

    kind = ErrorKind.MUTATION_LIMIT_EXCEEDED
    default_message = "too many mutations for a single transaction"


class OperationCancelledError(WebstatusDbError):
    kind = ErrorKind.CANCELLED
    default_message = "operation cancelled"


class DeadlineExceededError(WebstatusDbError):
    kind = ErrorKind.DEADLINE_EXCEEDED
    default_message = "deadline exceeded"


class BatchWriteError(WebstatusDbError):
    """A worker of the concurrent batch writer failed to flush a batch."""

    kind = ErrorKind.BATCH_WRITE_FAILED
    default_message = "batch write failed"


class SyncError(WebstatusDbError):
    """Base class for failures of a synchronization phase."""


class SyncReadFailedError(SyncError):
    kind = ErrorKind.SYNC_READ_FAILED
    default_message = "sync failed to read existing entities"


class SyncMutationCreationFailedError(SyncError):
    kind = ErrorKind.SYNC_MUTATION_CREATION_FAILED
    default_message = "sync failed to create mutations"


class SyncAtomicWriteFailedError(SyncError):
    kind = ErrorKind.SYNC_ATOMIC_WRITE_FAILED
    default_message = "sync atomic write failed"


class SyncBatchWriteFailedError(SyncError):
    kind = ErrorKind.SYNC_BATCH_WRITE_FAILED
    default_message = "sync batch write failed"


class SyncFailedToGetChildMutationsError(SyncError):
    kind = ErrorKind.SYNC_FAILED_TO_GET_CHILD_MUTATIONS
    default_message = "sync failed to get child delete mutations"


class AlreadyLockedError(WebstatusDbError):
    kind = ErrorKind.ALREADY_LOCKED
    default_message = "resource already locked by another worker"


class LockNotOwnedError(WebstatusDbError):
    kind = ErrorKind.LOCK_NOT_OWNED
    default_message = "cannot release lock not owned by worker"
