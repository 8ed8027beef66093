from pydantic import BaseModel
from typing import Any, Optional
from enum import Enum

from chatsync.schemas.friendship import RelationshipState
from chatsync.utils.exceptions import (
    ConflictError, MissingRecordError, NotAuthenticatedError, NotFoundError,
    PermissionDeniedError, StorageError, TransientNetworkError, ValidationError
)


class SyncErrorKind(str, Enum):
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    CONFLICT = "conflict"
    MISSING_RECORD = "missing_record"
    NOT_AUTHENTICATED = "not_authenticated"
    VALIDATION = "validation"
    STORAGE = "storage"


_KIND_BY_EXCEPTION = [
    (TransientNetworkError, SyncErrorKind.TRANSIENT),
    (NotFoundError, SyncErrorKind.NOT_FOUND),
    (PermissionDeniedError, SyncErrorKind.PERMISSION),
    (ConflictError, SyncErrorKind.CONFLICT),
    (MissingRecordError, SyncErrorKind.MISSING_RECORD),
    (NotAuthenticatedError, SyncErrorKind.NOT_AUTHENTICATED),
    (ValidationError, SyncErrorKind.VALIDATION),
    (StorageError, SyncErrorKind.STORAGE),
]


class SyncError(BaseModel):
    kind: SyncErrorKind
    message: str
    operation: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: Exception, operation: Optional[str] = None) -> "SyncError":
        # Anything the backends did not classify is treated as a network failure
        kind = SyncErrorKind.TRANSIENT
        for exc_type, exc_kind in _KIND_BY_EXCEPTION:
            if isinstance(exc, exc_type):
                kind = exc_kind
                break
        return cls(kind=kind, message=str(exc) or exc.__class__.__name__, operation=operation)


class OperationResult(BaseModel):
    value: Any = None
    error: Optional[SyncError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: SyncErrorKind, message: str, operation: Optional[str] = None) -> "OperationResult":
        return cls(error=SyncError(kind=kind, message=message, operation=operation))


class RelationshipMutationResult(OperationResult):
    user_id: str
    previous_state: RelationshipState
    state: RelationshipState
