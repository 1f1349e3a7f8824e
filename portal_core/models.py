# portal_core/models.py
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Any
from enum import Enum
import datetime

from portal_core.utils import utcnow

# --- Enums ---

class FileType(str, Enum):
    """Role of a file within its entity (e.g. author avatar vs banner)."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"

class SessionMode(str, Enum):
    CREATE = "create"
    EDIT = "edit"

class SessionStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    COMMITTED = "committed"
    CLEANED_UP = "cleaned_up"

# --- Files ---

class IncomingFile(BaseModel):
    """A user-selected file, as handed over by a form before upload."""
    name: str = Field(..., description="Original file name as selected by the user")
    content_type: str = Field(default="application/octet-stream", description="MIME type reported by the client")
    data: bytes = Field(..., description="Raw file content")

    @property
    def size(self) -> int:
        return len(self.data)

class StoredFile(BaseModel):
    """Location of an object after an upload or move."""
    bucket: str
    path: str = Field(..., description="Object path within the bucket")
    url: str = Field(..., description="Publicly resolvable URL")

class UploadedFile(BaseModel):
    """A file uploaded during an entity upload session, already in its final location."""
    bucket: str
    final_path: str
    file_type: FileType
    original_name: str
    url: str
    uploaded_at: datetime.datetime = Field(default_factory=utcnow)

class TrackedFile(BaseModel):
    """A temporary object owned by a legacy upload session."""
    bucket: str
    path: str

class ValidationResult(BaseModel):
    is_valid: bool
    error: Optional[str] = None

# --- Session State ---

class UploadSessionState(BaseModel):
    """Snapshot of an entity upload session. Replaced wholesale on every change."""
    entity_id: str = Field(..., description="Pre-generated id for creates, existing id for edits")
    entity_type: str
    mode: SessionMode
    uploaded_files: List[UploadedFile] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utcnow)
    is_active: bool = True

    class Config:
        frozen = True

class LegacyUploadSessionState(BaseModel):
    session_id: str
    uploaded_files: List[TrackedFile] = Field(default_factory=list)
    created_at: datetime.datetime = Field(default_factory=utcnow)

# --- Upload Service Request/Response Models ---

class OpenSessionRequest(BaseModel):
    """Request to open an entity upload session for one form instance."""
    entity_type: str
    mode: SessionMode
    existing_entity_id: Optional[str] = Field(None, description="Required for edit forms, ignored for create forms")

    @field_validator('entity_type')
    @classmethod
    def normalize_entity_type(cls, value: str) -> str:
        return value.strip().lower()

class SessionView(BaseModel):
    """What the portal sees of an entity upload session."""
    session_key: str
    entity_id: Optional[str] = None
    entity_type: str
    mode: SessionMode
    status: SessionStatus
    is_active: bool
    uploaded_files: List[UploadedFile] = Field(default_factory=list)

class LegacySessionView(BaseModel):
    session_id: str
    is_active: bool
    uploaded_files: List[TrackedFile] = Field(default_factory=list)

class TrackUploadRequest(BaseModel):
    bucket: str
    path: str

class MoveToPermanentRequest(BaseModel):
    bucket: str
    temp_path: str = Field(..., description="Object path under temp/{session_id}/")
    entity_id: str = Field(..., description="Id of the now-persisted entity")

class PortalResponse(BaseModel):
    """Standard response wrapper for the upload service."""
    status: str = Field(description="'success' or 'error'")
    data: Any | None = Field(default=None, description="The primary data payload (depends on the endpoint)")
    message: Optional[str] = Field(default=None, description="Optional status message or error details")
