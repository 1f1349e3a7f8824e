# services/upload_sessions/app/routers/entity_sessions.py
from fastapi import APIRouter, HTTPException, Body, Request, Query, Depends, UploadFile, File, Form
from portal_core.models import (
    FileType, IncomingFile, OpenSessionRequest, PortalResponse, SessionView,
)
from portal_core.storage import StorageGateway
from portal_core.utils import generate_session_id
from ..entity_session import EntityUploadSession, open_session
from ..main import get_gateway
from typing import Dict
import logging

logger = logging.getLogger("Portal_Core").getChild("UploadService").getChild("EntitySessionRouter")

router = APIRouter()


def _registry(request: Request) -> Dict[str, EntityUploadSession]:
    return request.app.state.entity_sessions


def get_session(session_key: str, request: Request) -> EntityUploadSession:
    session = _registry(request).get(session_key)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Upload session '{session_key}' not found")
    return session


def _view(session_key: str, session: EntityUploadSession) -> SessionView:
    return SessionView(
        session_key=session_key,
        entity_id=session.entity_id,
        entity_type=session.entity_type,
        mode=session.mode,
        status=session.status,
        is_active=session.is_active,
        uploaded_files=session.uploaded_files,
    )


@router.post("", response_model=PortalResponse)
async def create_session(
    request: Request,
    gateway: StorageGateway = Depends(get_gateway),
    payload: OpenSessionRequest = Body(...),
):
    """Opens a session for a form. Create forms get their entity id immediately."""
    try:
        session = open_session(payload.entity_type, payload.mode, gateway, existing_id=payload.existing_entity_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    session_key = generate_session_id()
    _registry(request)[session_key] = session
    logger.info(f"Opened {payload.mode.value} session {session_key} for {payload.entity_type} (entity id: {session.entity_id})")
    return PortalResponse(status="success", data=_view(session_key, session).model_dump(mode="json"))


@router.get("/{session_key}", response_model=PortalResponse)
async def read_session(session_key: str, session: EntityUploadSession = Depends(get_session)):
    return PortalResponse(status="success", data=_view(session_key, session).model_dump(mode="json"))


@router.post("/{session_key}/initialize", response_model=PortalResponse)
async def initialize_session(session_key: str, session: EntityUploadSession = Depends(get_session)):
    entity_id = session.initialize_session()
    return PortalResponse(status="success", data={"entity_id": entity_id})


@router.post("/{session_key}/uploads", response_model=PortalResponse)
async def upload_file(
    session_key: str,
    session: EntityUploadSession = Depends(get_session),
    file: UploadFile = File(...),
    file_type: FileType = Form(FileType.PRIMARY),
):
    incoming = IncomingFile(
        name=file.filename or "upload",
        content_type=file.content_type or "application/octet-stream",
        data=await file.read(),
    )
    try:
        uploaded = await session.upload_direct(incoming, file_type)
    except ValueError as e:
        # Role not defined for this entity type
        raise HTTPException(status_code=400, detail=str(e))
    return PortalResponse(status="success", data=uploaded.model_dump(mode="json"))


@router.delete("/{session_key}/uploads", response_model=PortalResponse)
async def remove_file(
    session_key: str,
    url: str = Query(..., description="Public URL of the uploaded file"),
    session: EntityUploadSession = Depends(get_session),
):
    await session.remove_upload(url)
    return PortalResponse(status="success", data=_view(session_key, session).model_dump(mode="json"))


@router.post("/{session_key}/commit", response_model=PortalResponse)
async def commit_session(session_key: str, request: Request, session: EntityUploadSession = Depends(get_session)):
    """Called once the form's row was saved. Returns the id to insert/update with; the handle is released."""
    if not session.is_active:
        raise HTTPException(status_code=409, detail="Session is not active")
    entity_id = session.commit()
    _registry(request).pop(session_key, None)
    return PortalResponse(status="success", data={"entity_id": entity_id, "status": session.status.value})


@router.post("/{session_key}/cleanup", response_model=PortalResponse)
async def cleanup_session(session_key: str, request: Request):
    """Form closed. Always succeeds; the handle is released."""
    session = _registry(request).pop(session_key, None)
    if session is None:
        return PortalResponse(status="success", message="No open session for this handle")
    await session.cleanup()
    return PortalResponse(status="success", data={"status": session.status.value})


@router.post("/{session_key}/reset", response_model=PortalResponse)
async def reset_session(session_key: str, request: Request):
    session = _registry(request).pop(session_key, None)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Upload session '{session_key}' not found")
    session.reset()
    return PortalResponse(status="success", message="Session discarded")
