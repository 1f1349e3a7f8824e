# services/upload_sessions/app/routers/legacy_sessions.py
from fastapi import APIRouter, HTTPException, Body, Request, Depends, UploadFile, File, Form
from portal_core.models import (
    FileType, IncomingFile, LegacySessionView, MoveToPermanentRequest, PortalResponse, TrackUploadRequest,
)
from portal_core.storage import StorageGateway
from ..legacy_session import LegacyUploadSession
from ..main import get_gateway
from typing import Dict
import logging

logger = logging.getLogger("Portal_Core").getChild("UploadService").getChild("LegacySessionRouter")

router = APIRouter()


def _registry(request: Request) -> Dict[str, LegacyUploadSession]:
    return request.app.state.legacy_sessions


def get_legacy_session(session_id: str, request: Request) -> LegacyUploadSession:
    session = _registry(request).get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Temporary session '{session_id}' not found")
    return session


def _view(session: LegacyUploadSession) -> dict:
    return LegacySessionView(
        session_id=session.session_id,
        is_active=session.is_active,
        uploaded_files=session.uploaded_files,
    ).model_dump(mode="json")


@router.post("", response_model=PortalResponse)
async def create_legacy_session(request: Request, gateway: StorageGateway = Depends(get_gateway)):
    session = LegacyUploadSession(gateway)
    _registry(request)[session.session_id] = session
    logger.info(f"Opened temporary session {session.session_id}")
    return PortalResponse(status="success", data=_view(session))


@router.post("/{session_id}/uploads", response_model=PortalResponse)
async def upload_temporary_file(
    session_id: str,
    session: LegacyUploadSession = Depends(get_legacy_session),
    file: UploadFile = File(...),
    entity_type: str = Form(...),
    file_type: FileType = Form(FileType.PRIMARY),
):
    incoming = IncomingFile(
        name=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )
    try:
        stored = await session.upload_temporary(incoming, entity_type.strip().lower(), file_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PortalResponse(status="success", data=stored.model_dump())


@router.post("/{session_id}/track", response_model=PortalResponse)
async def track_upload(
    session_id: str,
    session: LegacyUploadSession = Depends(get_legacy_session),
    payload: TrackUploadRequest = Body(...),
):
    try:
        session.track_upload(payload.bucket, payload.path)
    except ValueError as e:
        # Only objects under temp/{session_id}/ can be tracked
        raise HTTPException(status_code=400, detail=str(e))
    return PortalResponse(status="success", data=_view(session))


@router.post("/{session_id}/move", response_model=PortalResponse)
async def move_to_permanent(
    session_id: str,
    session: LegacyUploadSession = Depends(get_legacy_session),
    payload: MoveToPermanentRequest = Body(...),
):
    try:
        stored = await session.move_to_permanent(payload.bucket, payload.temp_path, payload.entity_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PortalResponse(status="success", data=stored.model_dump())


@router.post("/{session_id}/commit", response_model=PortalResponse)
async def commit_legacy_session(session_id: str, request: Request):
    session = _registry(request).pop(session_id, None)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Temporary session '{session_id}' not found")
    session.commit_session()
    return PortalResponse(status="success", message="Temporary session committed")


@router.post("/{session_id}/cleanup", response_model=PortalResponse)
async def cleanup_legacy_session(session_id: str, request: Request):
    """Deletes every tracked temporary file. Always succeeds."""
    session = _registry(request).pop(session_id, None)
    if session is None:
        return PortalResponse(status="success", data={"deleted": 0}, message="No open session for this id")
    deleted = await session.cleanup_session()
    return PortalResponse(status="success", data={"deleted": deleted})
