#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
FastAPI LAN drive - upload / browse / download / rename / delete with live
updates pushed to every open browser over a websocket.
"""

# ----------------------------------------------------------------------
# IMPORTS
# ----------------------------------------------------------------------
import argparse
import logging
import socket
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    Request,
    UploadFile,
    WebSocket,
    WebSocketDisconnect,
)
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from .accounts import TokenService, UserStore
from .config import Settings, get_settings
from .errors import DriveError
from .file_service import FileService
from .identity import IdentityResolver
from .metadata_store import MetadataStore
from .models import Actor, CreateFolderRequest, LoginRequest, RegisterRequest, RenameRequest
from .notifier import Notifier
from .paths import PathResolver

logger = logging.getLogger(__name__)

UPLOAD_ROUTE = "/api/files/upload"


# ----------------------------------------------------------------------
# HELPERS
# ----------------------------------------------------------------------
def get_local_ip() -> str:
    """Return the first non-loopback IP address of the host."""
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 1))
        ip = s.getsockname()[0]
    except OSError:
        ip = "127.0.0.1"
    finally:
        s.close()
    return ip


def get_actor(request: Request) -> Actor:
    return request.app.state.identity.resolve(request)


def get_files(request: Request) -> FileService:
    return request.app.state.files


def get_users(request: Request) -> UserStore:
    return request.app.state.users


router = APIRouter(prefix="/api")
ws_router = APIRouter()


# ----------------------------------------------------------------------
# 1. Identity & accounts
# ----------------------------------------------------------------------
@router.get("/me")
async def me(actor: Actor = Depends(get_actor)):
    return {
        "success": True,
        "ip": actor.ip,
        "isAdmin": actor.is_admin,
        "authenticated": actor.authenticated,
        "user": actor.public(),
    }


@router.post("/auth/register", status_code=201)
async def register(body: RegisterRequest, users: UserStore = Depends(get_users)):
    user = await users.register(body.name, body.email, body.username, body.password)
    return {"success": True, "message": "User registered successfully", "user": user}


@router.post("/auth/login")
async def login(body: LoginRequest, request: Request, users: UserStore = Depends(get_users)):
    user = await users.authenticate(body.username.strip(), body.password)
    token = request.app.state.tokens.issue(user)
    return {"success": True, "token": token, "user": user}


# ----------------------------------------------------------------------
# 2. Browse / download
# ----------------------------------------------------------------------
@router.get("/files")
async def list_files(
    path: str = "",
    actor: Actor = Depends(get_actor),
    files: FileService = Depends(get_files),
):
    logical, views = await files.list_folder(actor, path)
    return {"success": True, "path": logical, "files": [v.to_json() for v in views]}


@router.get("/files/download")
async def download_file(id: Optional[str] = None, files: FileService = Depends(get_files)):
    target, record = await files.open_download(id)
    # the stored name never reaches the client
    return FileResponse(target, filename=record.name, media_type="application/octet-stream")


# ----------------------------------------------------------------------
# 3. Mutations
# ----------------------------------------------------------------------
@router.post("/folders")
async def create_folder(
    body: CreateFolderRequest,
    actor: Actor = Depends(get_actor),
    files: FileService = Depends(get_files),
):
    view = await files.create_folder(actor, body.name, body.current_path)
    return {"success": True, "message": "Folder created", "file": view.to_json()}


@router.post("/files/upload")
async def upload_files(
    path: str = Form(""),
    files: Optional[List[UploadFile]] = File(None),
    actor: Actor = Depends(get_actor),
    service: FileService = Depends(get_files),
):
    uploaded, failed = await service.upload(actor, path, files or [])
    return {
        "success": True,
        "message": "Files uploaded successfully",
        "files": [v.to_json() for v in uploaded],
        "failed": failed,
    }


@router.delete("/files")
async def delete_file(
    id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    files: FileService = Depends(get_files),
):
    record = await files.delete(actor, id)
    return {"success": True, "message": "Deleted successfully", "id": record.id}


@router.put("/files")
async def rename_file(
    body: RenameRequest,
    id: Optional[str] = None,
    actor: Actor = Depends(get_actor),
    files: FileService = Depends(get_files),
):
    view = await files.rename(actor, id, body.new_name)
    return {"success": True, "message": "Renamed successfully", "file": view.to_json()}


# ----------------------------------------------------------------------
# 4. Storage & dashboard
# ----------------------------------------------------------------------
@router.get("/storage")
async def storage_info(files: FileService = Depends(get_files)):
    usage = await files.storage_info()
    return {"success": True, **usage.to_json()}


@router.get("/dashboard")
async def dashboard(files: FileService = Depends(get_files)):
    stats, usage = await files.dashboard_stats()
    return {"success": True, **stats.to_json(), "storage": usage.to_json()}


# ----------------------------------------------------------------------
# 5. Update websocket - pushes file_change / dashboard_update / storage_update
# ----------------------------------------------------------------------
@ws_router.websocket("/ws")
async def updates_ws(websocket: WebSocket):
    state = websocket.app.state
    actor = state.identity.resolve(websocket)
    await websocket.accept()
    state.notifier.register(websocket, actor)
    try:
        await websocket.send_json(
            {
                "event": "connected",
                "ip": actor.ip,
                "authenticated": actor.authenticated,
                "user": actor.public(),
            }
        )
        while True:
            await websocket.receive_text()   # nothing expected from the client
    except WebSocketDisconnect:
        pass
    finally:
        state.notifier.unregister(websocket)


# ----------------------------------------------------------------------
# APP FACTORY
# ----------------------------------------------------------------------
def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings.ensure_dirs()
        logger.info("Storage directory: %s", settings.storage_root)
        yield
        await app.state.notifier.drain()

    app = FastAPI(title="LAN Share", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in settings.cors_origins.split(",")],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    tokens = TokenService(settings.jwt_secret, settings.jwt_algorithm, settings.token_ttl_hours)
    notifier = Notifier()
    app.state.settings = settings
    app.state.tokens = tokens
    app.state.notifier = notifier
    app.state.identity = IdentityResolver(tokens, settings.admin_key, settings.trust_forwarded_for)
    app.state.users = UserStore(settings.users_file)
    app.state.files = FileService(
        settings,
        MetadataStore(settings.metadata_file),
        PathResolver(settings.storage_root),
        notifier,
    )

    @app.middleware("http")
    async def limit_upload_size(request: Request, call_next):
        if request.method == "POST" and request.url.path == UPLOAD_ROUTE:
            length = request.headers.get("content-length", "")
            if length.isdigit() and int(length) > settings.max_upload_bytes:
                return JSONResponse(
                    status_code=413,
                    content={
                        "success": False,
                        "message": f"Upload exceeds the {settings.max_upload_bytes} byte limit",
                    },
                )
        return await call_next(request)

    @app.exception_handler(DriveError)
    async def drive_error(request: Request, exc: DriveError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content={"success": False, "message": message})

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    app.include_router(router)
    app.include_router(ws_router)
    return app


# ----------------------------------------------------------------------
# Run the server
# ----------------------------------------------------------------------
def main():
    parser = argparse.ArgumentParser(description="LAN file sharing server")
    parser.add_argument("--host", help="Interface to bind (default 0.0.0.0).")
    parser.add_argument("--port", type=int, help="Port to listen on (default 5000).")
    parser.add_argument("--storage", help="Directory holding the shared files.")
    parser.add_argument("--data-dir", help="Directory holding db.json and users.json.")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args()

    overrides = {
        "host": args.host,
        "port": args.port,
        "storage_root": args.storage,
        "data_dir": args.data_dir,
        "log_level": args.log_level,
    }
    settings = Settings(**{k: v for k, v in overrides.items() if v is not None})

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logger.info("Server ready -> http://%s:%d (LAN only)", get_local_ip(), settings.port)

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
