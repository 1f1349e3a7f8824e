# services/upload_sessions/app/legacy_session.py
"""
Legacy Temporary-Session Manager.

Older forms upload to `temp/{session_id}/...` before the entity exists and move
the files to `{entity_id}/...` after saving. The session tracks every temporary
object so cancelling the form can delete them.
"""
import logging
from typing import List, Union

from portal_core import path_policy
from portal_core.errors import SessionStateError
from portal_core.models import FileType, IncomingFile, LegacyUploadSessionState, StoredFile, TrackedFile
from portal_core.storage import StorageGateway
from portal_core.utils import generate_session_id

logger = logging.getLogger("Portal_Core").getChild("UploadSessions").getChild("LegacySession")

# Role prefixes used for temporary objects
FEATURED_TEMP_PREFIX = "featured"
BRIEF_TEMP_PREFIX = "brief-temp"
LOGO_TEMP_PREFIX = "logo-temp"


class LegacyUploadSession:
    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway
        self._state = LegacyUploadSessionState(session_id=generate_session_id())
        self._active = True
        self.job_prefix = f"[temp:{self._state.session_id}]"

    @property
    def session_id(self) -> str:
        return self._state.session_id

    @property
    def uploaded_files(self) -> List[TrackedFile]:
        return list(self._state.uploaded_files)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def state(self) -> LegacyUploadSessionState:
        return self._state

    def _require_active(self, action: str) -> None:
        if not self._active:
            raise SessionStateError(f"Cannot {action}: temporary session {self.session_id} is closed")

    def _check_owned(self, bucket: str, path: str) -> None:
        """Only objects under this session's temp folder may be tracked, moved or deleted."""
        if bucket not in path_policy.STORAGE_BUCKETS:
            raise ValueError(f"Unknown bucket '{bucket}'")
        prefix = f"{path_policy.session_prefix(self.session_id)}/"
        name = path[len(prefix):] if path.startswith(prefix) else ""
        if not name or any(part in ("", ".", "..") for part in name.split("/")) or "\\" in name:
            raise ValueError(f"Path '{path}' is outside temporary session {self.session_id}")

    def track_upload(self, bucket: str, path: str) -> None:
        """Registers a temporary object uploaded outside this session."""
        self._require_active("track uploads")
        self._check_owned(bucket, path)
        self._state.uploaded_files.append(TrackedFile(bucket=bucket, path=path))
        logger.debug(f"{self.job_prefix} Tracking {bucket}/{path}")

    async def upload_temporary(self, file: IncomingFile, entity_type: str,
                               file_type: Union[FileType, str] = FileType.PRIMARY) -> StoredFile:
        self._require_active("upload")
        rule = path_policy.resolve_rule(entity_type, FileType(file_type))
        stored = await self.gateway.upload_temporary(file, rule.bucket, rule.asset_class, self.session_id, rule.prefix)
        if not self._active:
            logger.warning(f"{self.job_prefix} Session closed while uploading '{file.name}'; {stored.bucket}/{stored.path} is not tracked")
            return stored
        self._state.uploaded_files.append(TrackedFile(bucket=stored.bucket, path=stored.path))
        return stored

    async def move_to_permanent(self, bucket: str, temp_path: str, entity_id: str) -> StoredFile:
        self._require_active("move files")
        self._check_owned(bucket, temp_path)
        stored = await self.gateway.move_to_permanent(bucket, temp_path, entity_id)
        self._state.uploaded_files = [
            f for f in self._state.uploaded_files if not (f.bucket == bucket and f.path == temp_path)
        ]
        return stored

    async def cleanup_session(self) -> int:
        """Deletes every tracked temporary object. Failures are logged and skipped. Returns the number deleted."""
        files = list(self._state.uploaded_files)
        if files:
            logger.info(f"{self.job_prefix} Cleaning up {len(files)} temporary file(s)")
        deleted = 0
        for tracked in files:
            try:
                await self.gateway.delete(tracked.bucket, tracked.path)
                deleted += 1
            except Exception as e:
                logger.error(f"{self.job_prefix} Failed to delete {tracked.bucket}/{tracked.path}: {e}")
        self._state.uploaded_files = []
        self._active = False
        return deleted

    def commit_session(self) -> None:
        """The files were moved (or are meant to stay); forget them without deleting."""
        logger.info(f"{self.job_prefix} Committed, {len(self._state.uploaded_files)} tracked file(s) released")
        self._state.uploaded_files = []
        self._active = False

# --- Per-kind helpers ---

async def upload_temporary_featured_image(file: IncomingFile, session_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.upload_temporary(
        file, path_policy.FEATURED_IMAGES, path_policy.FEATURED_IMAGE, session_id, FEATURED_TEMP_PREFIX,
    )


async def upload_temporary_brief_image(file: IncomingFile, session_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.upload_temporary(
        file, path_policy.ARTICLE_IMAGES, path_policy.BRIEF_IMAGE, session_id, BRIEF_TEMP_PREFIX,
    )


async def upload_temporary_company_logo(file: IncomingFile, session_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.upload_temporary(
        file, path_policy.COMPANY_LOGOS, path_policy.COMPANY_LOGO, session_id, LOGO_TEMP_PREFIX,
    )


async def move_featured_image_to_article(temp_path: str, article_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.move_to_permanent(path_policy.FEATURED_IMAGES, temp_path, article_id)


async def move_brief_image_to_permanent(temp_path: str, brief_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.move_to_permanent(path_policy.ARTICLE_IMAGES, temp_path, brief_id)


async def move_company_logo_to_permanent(temp_path: str, company_id: str, gateway: StorageGateway) -> StoredFile:
    return await gateway.move_to_permanent(path_policy.COMPANY_LOGOS, temp_path, company_id)
