# services/upload_sessions/app/entity_session.py
"""
Entity Upload Session.

One session per open create/edit form. Files are uploaded straight to their
final location under the entity's id, so nothing has to be moved on save:

- create forms mint the entity id up front. The id is reused for every upload
  and for the database insert done by the caller after `commit_create()`.
  Cancelling the form deletes the whole `{entity_id}/` folder.
- edit forms use the persisted entity's id and never delete anything on
  cancel: the folder may hold files the saved row still points at.

Cleanup is best-effort. It logs failures and never raises, so closing a form
cannot be blocked by storage.
"""
import logging
from typing import Callable, List, Optional, Union

from portal_core import path_policy
from portal_core.errors import SessionStateError
from portal_core.models import (
    FileType, IncomingFile, SessionMode, SessionStatus, UploadedFile, UploadSessionState,
)
from portal_core.storage import StorageGateway
from portal_core.utils import generate_entity_id

logger = logging.getLogger("Portal_Core").getChild("UploadSessions").getChild("EntitySession")


class EntityUploadSession:
    def __init__(
        self,
        entity_type: str,
        mode: Union[SessionMode, str],
        gateway: StorageGateway,
        existing_entity_id: Optional[str] = None,
    ):
        if not path_policy.is_known_entity_type(entity_type):
            logger.error(f"Invalid entity type: {entity_type}")
            raise ValueError(f"Unknown entity type '{entity_type}'")
        self._entity_type = entity_type
        self._mode = SessionMode(mode)
        self.gateway = gateway
        self._existing_entity_id = existing_entity_id
        self._state: Optional[UploadSessionState] = None
        self._status = SessionStatus.UNINITIALIZED

        if self._mode == SessionMode.EDIT:
            if not existing_entity_id:
                raise SessionStateError("Edit sessions require the id of the entity being edited")
            path_policy.entity_prefix(existing_entity_id)
            self._activate(existing_entity_id)

    # --- Properties ---

    @property
    def entity_type(self) -> str:
        return self._entity_type

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def state(self) -> Optional[UploadSessionState]:
        return self._state

    @property
    def entity_id(self) -> Optional[str]:
        return self._state.entity_id if self._state else None

    @property
    def uploaded_files(self) -> List[UploadedFile]:
        return list(self._state.uploaded_files) if self._state else []

    @property
    def is_active(self) -> bool:
        return bool(self._state and self._state.is_active)

    def _prefix(self) -> str:
        return f"[{self._entity_type}:{self.entity_id or '-'}]"

    # --- State helpers ---

    def _activate(self, entity_id: str) -> None:
        self._state = UploadSessionState(entity_id=entity_id, entity_type=self._entity_type, mode=self._mode)
        self._status = SessionStatus.ACTIVE
        logger.info(f"{self._prefix()} Upload session started ({self._mode.value})")

    def _update(self, fn: Callable[[UploadSessionState], UploadSessionState]) -> None:
        # Applied to whatever state is current once the caller's await has returned
        if self._state is not None:
            self._state = fn(self._state)

    def _deactivate(self, status: SessionStatus) -> None:
        self._update(lambda s: s.model_copy(update={"is_active": False}))
        self._status = status

    # --- Operations ---

    def initialize_session(self) -> str:
        """Mints the entity id for a create form and activates the session. Idempotent while active."""
        if self.is_active:
            logger.warning(f"{self._prefix()} Session already initialized, keeping entity id")
            return self._state.entity_id
        if self._status in (SessionStatus.COMMITTED, SessionStatus.CLEANED_UP):
            raise SessionStateError(
                f"Session was {self._status.value}; open a new session instead", entity_id=self.entity_id,
            )
        entity_id = self._existing_entity_id if self._mode == SessionMode.EDIT else generate_entity_id()
        self._activate(entity_id)
        return entity_id

    async def upload_direct(self, file: IncomingFile, file_type: Union[FileType, str] = FileType.PRIMARY) -> UploadedFile:
        if not self.is_active:
            raise SessionStateError("No active upload session. Call initialize_session() first.", entity_id=self.entity_id)
        file_type = FileType(file_type)
        entity_id = self._state.entity_id

        stored = await self.gateway.upload_entity_image(file, self._entity_type, entity_id, file_type)
        uploaded = UploadedFile(
            bucket=stored.bucket,
            final_path=stored.path,
            file_type=file_type,
            original_name=file.name,
            url=stored.url,
        )

        if not self.is_active or self._state.entity_id != entity_id:
            logger.warning(f"[{self._entity_type}:{entity_id}] Session ended while uploading '{file.name}'; {stored.bucket}/{stored.path} is not tracked")
            return uploaded

        self._update(lambda s: s.model_copy(update={"uploaded_files": [*s.uploaded_files, uploaded]}))
        logger.info(f"{self._prefix()} Uploaded {file_type.value} file to {stored.bucket}/{stored.path}")
        return uploaded

    async def remove_upload(self, file_url: str) -> None:
        if not self.is_active:
            logger.warning(f"{self._prefix()} remove_upload called without an active session")
            return
        record = next((f for f in self._state.uploaded_files if f.url == file_url), None)
        if record is None:
            logger.warning(f"{self._prefix()} File not found in session: {file_url}")
            return

        await self.gateway.delete(record.bucket, record.final_path)
        self._update(lambda s: s.model_copy(update={"uploaded_files": [f for f in s.uploaded_files if f.url != file_url]}))
        logger.info(f"{self._prefix()} Removed {record.bucket}/{record.final_path}")

    def commit_create(self) -> Optional[str]:
        """
        Marks a create session as saved. The caller inserts the row using the returned id.
        No storage operation happens: the files are already where they belong.
        """
        if self._mode != SessionMode.CREATE:
            logger.error(f"{self._prefix()} commit_create() is only valid for create sessions")
            return None
        if not self.is_active:
            logger.warning(f"{self._prefix()} No active session to commit")
            return None
        entity_id = self._state.entity_id
        self._deactivate(SessionStatus.COMMITTED)
        logger.info(f"{self._prefix()} Committed with {len(self._state.uploaded_files)} file(s)")
        return entity_id

    def commit(self) -> Optional[str]:
        if self._mode == SessionMode.CREATE:
            return self.commit_create()
        if not self.is_active:
            logger.warning(f"{self._prefix()} No active session to commit")
            return None
        self._deactivate(SessionStatus.COMMITTED)
        logger.info(f"{self._prefix()} Edit session closed after save")
        return self._state.entity_id

    async def cleanup(self) -> None:
        """Cancel path. Deletes an abandoned create session's folder; never raises."""
        state = self._state
        try:
            if state is None or not state.is_active:
                logger.debug(f"{self._prefix()} Nothing to clean up (status: {self._status.value})")
                return
            # Stop in-flight uploads from being attributed while the folder is deleted
            self._deactivate(self._status)
            if state.mode == SessionMode.EDIT:
                logger.info(f"{self._prefix()} Edit session cancelled; existing files are kept")
                return
            if not state.uploaded_files:
                return
            logger.info(f"{self._prefix()} Cleaning up {len(state.uploaded_files)} abandoned upload(s)")
            removed = await self.gateway.cleanup_entity_folder(state.entity_type, state.entity_id)
            logger.info(f"{self._prefix()} Removed {removed} object(s)")
        except Exception as e:
            logger.error(f"{self._prefix()} Cleanup failed, objects left for the sweep job: {e}", exc_info=True)
        finally:
            self._state = None
            if self._status != SessionStatus.COMMITTED:
                self._status = SessionStatus.CLEANED_UP

    def reset(self) -> None:
        """Forgets the session without touching storage. A new form needs a new session."""
        self._state = None
        if self._status != SessionStatus.COMMITTED:
            self._status = SessionStatus.CLEANED_UP

    def close(self) -> None:
        """Ends the session without touching storage."""
        self.reset()

# --- Factories ---

def open_session(
    entity_type: str,
    mode: Union[SessionMode, str],
    gateway: StorageGateway,
    existing_id: Optional[str] = None,
) -> EntityUploadSession:
    """Opens a ready-to-use session for one form instance."""
    session = EntityUploadSession(entity_type, mode, gateway, existing_entity_id=existing_id)
    if session.mode == SessionMode.CREATE:
        session.initialize_session()
    return session


def open_create_session(entity_type: str, gateway: StorageGateway) -> EntityUploadSession:
    return open_session(entity_type, SessionMode.CREATE, gateway)


def open_edit_session(entity_type: str, entity_id: str, gateway: StorageGateway) -> EntityUploadSession:
    return open_session(entity_type, SessionMode.EDIT, gateway, existing_id=entity_id)
