import logging
import os
import re
from pathlib import Path
from uuid import uuid4

from fastapi import FastAPI, File, HTTPException, UploadFile, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from .auth import AuthenticationGate
from .history import HistoryService
from .presence import PresenceBroadcaster
from .registry import ConnectionRegistry
from .router import MessageRouter
from .ws_handler import websocket_chat as _websocket_chat

logger = logging.getLogger(__name__)

app = FastAPI(title="chatrelay")

BASE_DIR = Path(__file__).resolve().parent.parent

# --- Configuration ---

DB_PATH = os.environ.get("CHATRELAY_DB_PATH", str(BASE_DIR / "chatrelay.db"))
UPLOADS_DIR = Path(os.environ.get("CHATRELAY_UPLOADS_DIR", str(BASE_DIR / "uploads"))).resolve()
MAX_UPLOAD_BYTES = int(os.environ.get("CHATRELAY_MAX_UPLOAD_MB", "50")) * 1024 * 1024
UPLOAD_CHUNK_BYTES = 1024 * 1024

VOICE_SUBDIR = "voices"
FILE_SUBDIR = "files"

_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")


# --- CORS Configuration ---

def _get_cors_origins() -> list[str]:
    """Get CORS origins from environment variable or use default."""
    cors_origins_str = os.environ.get("CHATRELAY_CORS_ORIGINS", "http://localhost:3000")
    origins = [origin.strip() for origin in cors_origins_str.split(",") if origin.strip()]
    return origins if origins else ["http://localhost:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Services ---

_history = HistoryService(DB_PATH)
_registry = ConnectionRegistry()
_presence = PresenceBroadcaster(_registry)
_gate = AuthenticationGate(_registry, _history, _presence)
_router = MessageRouter(_registry, _history, _presence)

# Uploaded attachments
for _subdir in (VOICE_SUBDIR, FILE_SUBDIR):
    (UPLOADS_DIR / _subdir).mkdir(parents=True, exist_ok=True)

app.mount("/uploads", StaticFiles(directory=str(UPLOADS_DIR)), name="uploads")


@app.on_event("startup")
async def startup_event():
    # StartupError propagates: the server must not come up without its store
    await _history.open()


@app.on_event("shutdown")
async def shutdown_event():
    await _history.close()


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/users")
async def api_list_users():
    identities = await _history.list_identities()
    return [{"name": i.name, "email": i.email} for i in identities]


# --- Uploads ---

def _safe_filename(name: str | None) -> str:
    return _UNSAFE_FILENAME_RE.sub("_", os.path.basename(name or "")) or "upload"


async def _store_upload(upload: UploadFile, subdir: str) -> str:
    """Write *upload* under UPLOADS_DIR/subdir and return its public path."""
    chunks = []
    size = 0
    while chunk := await upload.read(UPLOAD_CHUNK_BYTES):
        size += len(chunk)
        if size > MAX_UPLOAD_BYTES:
            raise HTTPException(status_code=413, detail="File too large")
        chunks.append(chunk)
    if not size:
        raise HTTPException(status_code=400, detail="No file uploaded")
    data = b"".join(chunks)

    stored_name = f"{uuid4()}-{_safe_filename(upload.filename)}"
    dest_dir = UPLOADS_DIR / subdir
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        (dest_dir / stored_name).write_bytes(data)
    except OSError:
        logger.exception("Failed to store upload %s", stored_name)
        raise HTTPException(status_code=500, detail="Upload failed")
    return f"/uploads/{subdir}/{stored_name}"


@app.post("/api/upload/voice")
async def api_upload_voice(voice: UploadFile = File(...)):
    path = await _store_upload(voice, VOICE_SUBDIR)
    return {"success": True, "path": path}


@app.post("/api/upload/file")
async def api_upload_file(file: UploadFile = File(...)):
    path = await _store_upload(file, FILE_SUBDIR)
    return {
        "success": True,
        "path": path,
        "fileName": file.filename,
        "fileType": file.content_type,
    }


# --- WebSocket relay ---

@app.websocket("/ws")
async def websocket_chat(websocket: WebSocket):
    await _websocket_chat(
        websocket,
        registry=_registry,
        gate=_gate,
        router=_router,
        presence=_presence,
    )
