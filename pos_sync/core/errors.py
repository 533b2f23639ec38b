from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by the sync layer."""


class BusinessError(SyncError):
    """The request is invalid before anything touches the cache."""


class EntityNotFoundError(BusinessError):
    def __init__(self, kind, entity_id: str):
        super().__init__(f"{kind} {entity_id} not found")
        self.kind = kind
        self.entity_id = entity_id


class EntityValidationError(BusinessError):
    pass


class RemoteError(SyncError):
    """The remote API rejected a call or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteTimeoutError(RemoteError):
    pass
