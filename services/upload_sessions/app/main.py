# services/upload_sessions/app/main.py
from fastapi import FastAPI, Request, HTTPException, Response
from fastapi.responses import JSONResponse
from portal_core.config import settings
from portal_core.errors import SessionStateError, StorageError, UploadError, ValidationError
from portal_core.models import PortalResponse
from portal_core import path_policy
from portal_core.storage import StorageGateway, get_storage_gateway as create_storage_gateway, guess_content_type
from contextlib import asynccontextmanager
import logging

logger = logging.getLogger("Portal_Core").getChild("UploadService")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Upload Service lifespan startup: Initializing storage gateway.")
    try:
        app.state.storage_gateway = await create_storage_gateway()
    except Exception as e:
        # Let the app start; upload endpoints answer 503 until storage is configured
        logger.error(f"Failed to initialize storage gateway during startup: {e}", exc_info=True)
        app.state.storage_gateway = None
    # Open sessions, keyed by the handle returned to the form
    app.state.entity_sessions = {}
    app.state.legacy_sessions = {}

    yield

    logger.info("Upload Service lifespan shutdown.")
    open_count = len(app.state.entity_sessions) + len(app.state.legacy_sessions)
    if open_count:
        # Nothing is deleted here; leftover objects are the sweep job's concern
        logger.warning(f"Shutting down with {open_count} open upload session(s).")
    app.state.entity_sessions.clear()
    app.state.legacy_sessions.clear()
    app.state.storage_gateway = None


app = FastAPI(
    title="Portal Upload Service",
    description="Upload sessions for the admin portal's entity forms",
    version="1.0.0",
    lifespan=lifespan,
)

# --- Dependencies ---

def get_gateway(request: Request) -> StorageGateway:
    """Dependency function to get the storage gateway from app state."""
    gateway = getattr(request.app.state, 'storage_gateway', None)
    if not gateway:
        logger.error("Storage gateway dependency not met: gateway not available in application state.")
        raise HTTPException(status_code=503, detail="Upload service internal error: storage not ready")
    return gateway

# --- Error Mapping ---

def _error_response(status_code: int, exc: UploadError) -> JSONResponse:
    body = PortalResponse(status="error", message=exc.message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _error_response(400, exc)


@app.exception_handler(SessionStateError)
async def session_state_error_handler(request: Request, exc: SessionStateError):
    logger.warning(f"Session state error on {request.url.path}: {exc.message}")
    return _error_response(409, exc)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return _error_response(502, exc)

# --- Meta ---

@app.get("/health", response_model=PortalResponse, tags=["Meta"])
async def health_check(request: Request):
    gateway = getattr(request.app.state, 'storage_gateway', None)
    backend = gateway.backend.backend_name if gateway else "NOT initialized"
    return PortalResponse(status="success", message=f"Upload Service is running (Storage: {backend})")


@app.get("/", response_model=PortalResponse, tags=["Meta"])
async def read_root():
    return PortalResponse(status="success", message="Welcome to the Portal Upload Service")


@app.get("/asset-classes", response_model=PortalResponse, tags=["Meta"])
async def list_asset_classes():
    """Size/type limits, for hints shown next to file pickers."""
    return PortalResponse(
        status="success",
        data={name: asset.describe() for name, asset in path_policy.ASSET_CLASSES.items()},
    )

# --- Local Files ---

@app.get("/files/{bucket}/{path:path}", tags=["Files"])
async def serve_file(bucket: str, path: str, request: Request):
    """Serves objects so public urls of the local backend resolve."""
    gateway = get_gateway(request)
    try:
        data = await gateway.download(bucket, path)
    except StorageError:
        raise HTTPException(status_code=404, detail=f"Object not found: {bucket}/{path}")
    return Response(
        content=data,
        media_type=guess_content_type(path),
        headers={"Cache-Control": f"max-age={settings.STORAGE_CACHE_CONTROL}"},
    )

# --- Routing ---
# Imported after the app and dependencies are defined
from .routers import entity_sessions, legacy_sessions

app.include_router(entity_sessions.router, prefix="/sessions", tags=["Entity Sessions"])
app.include_router(legacy_sessions.router, prefix="/legacy-sessions", tags=["Legacy Sessions"])
