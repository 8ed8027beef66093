class ChatSyncException(Exception):
    """Base exception for the synchronizer"""
    pass


class TransientNetworkError(ChatSyncException):
    """A store, identity or blob call did not complete"""
    pass


class NotFoundError(ChatSyncException):
    """Record not found errors"""
    pass


class PermissionDeniedError(ChatSyncException):
    """The backend refused the operation"""
    pass


class ConflictError(ChatSyncException):
    """Record conflict errors"""
    pass


class ValidationError(ChatSyncException):
    """Validation related errors"""
    pass


class NotAuthenticatedError(ChatSyncException):
    """No authenticated identity is available"""
    pass


class MissingRecordError(ChatSyncException):
    """A related record is missing from a local cache"""
    pass


class StorageError(ChatSyncException):
    """Blob storage related errors"""
    pass
