# portal_core/errors.py
"""
Error taxonomy for admin uploads.

- ValidationError: the selected file fails MIME/size checks. Raised before any
  network call; always user-facing and recoverable (pick another file).
- StorageError: any backend failure during upload/delete/copy/move. Wraps the
  underlying cause. Propagated for user actions, swallowed and logged during
  cleanup.
- SessionStateError: operation attempted without an active session, or an
  invalid mode/operation pairing. A usage fault, not a user-facing condition.
"""
from typing import Optional


class UploadError(Exception):
    """Base class for all upload subsystem errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(UploadError):
    """File failed the asset-class checks (MIME type, byte size)."""

    def __init__(self, message: str, *, asset_class: Optional[str] = None):
        super().__init__(message)
        self.asset_class = asset_class


class StorageError(UploadError):
    """Object-storage backend failure, carrying the original exception as `cause`."""

    def __init__(
        self,
        message: str,
        *,
        bucket: Optional[str] = None,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.bucket = bucket
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.bucket:
            parts.append(f"bucket={self.bucket}")
        if self.path:
            parts.append(f"path={self.path}")
        if self.cause is not None:
            parts.append(f"cause={self.cause!r}")
        return " ".join(parts)


class SessionStateError(UploadError):
    """Session operation called in the wrong state or mode."""

    def __init__(self, message: str, *, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity_id = entity_id
