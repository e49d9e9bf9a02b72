"""
REST Share API

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Async, pydantic models, auto-docs
2. Flask - Simple, but sync-focused
3. aiohttp - Async, but no request/response models

Decision: FastAPI
- Same event loop as the content store's background mirrors
- Pydantic response models double as documentation
- Multipart uploads through UploadFile

API Design:
- /files is the collection of stored files, /files/{id} one record
- /files/{id}/download serves the bytes; this URL is the share link
- A failed durable write never fails an upload: the record is live in
  memory and the response says durable=false
"""

import logging
from contextlib import asynccontextmanager
from typing import List
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from .. import __version__
from ..errors import StoreIOError
from ..file.descriptor import guess_mime_type
from ..storage import ContentStore

logger = logging.getLogger(__name__)


# === Pydantic Models ===

class FileInfo(BaseModel):
    """Listing entry for a stored file."""
    id: str
    name: str
    size: int
    type: str


class FileDetail(FileInfo):
    """Full metadata of a stored file."""
    has_data: bool
    created_at: float


class UploadResult(BaseModel):
    """Result of storing an uploaded file."""
    id: str
    name: str
    size: int
    durable: bool


class DeleteResult(BaseModel):
    """Result of deleting a stored file."""
    success: bool
    durable: bool = True


# === API Creation ===

def create_app(store: ContentStore, owns_store: bool = False) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        store: ContentStore to serve
        owns_store: Open the store on startup and close it on shutdown

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        logger.info("Share API starting...")
        if owns_store:
            await store.open()
        try:
            yield
        finally:
            if owns_store:
                await store.close()
            logger.info("Share API stopping...")

    app = FastAPI(
        title="peerdrop Share API",
        description="Share files on the local network by link",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Endpoints ===

    @app.get("/", tags=["General"])
    async def root():
        """API root - basic info."""
        return {
            "name": "peerdrop",
            "version": __version__,
            "status": "running",
            "files": len(store),
        }

    @app.get("/files", response_model=List[FileInfo], tags=["Files"])
    async def list_files():
        """List stored files."""
        return [
            FileInfo(id=s.id, name=s.name, size=s.size, type=s.type)
            for s in store.list()
        ]

    @app.get("/files/{file_id}", response_model=FileDetail, tags=["Files"])
    async def get_file_info(file_id: str):
        """Get metadata of one stored file."""
        record = store.get(file_id)
        if record is None:
            raise HTTPException(status_code=404, detail="File not found")

        return FileDetail(
            id=record.id,
            name=record.name,
            size=record.size,
            type=record.type,
            has_data=record.has_data,
            created_at=record.created_at,
        )

    @app.get("/files/{file_id}/download", tags=["Files"])
    async def download_file(file_id: str):
        """Serve the bytes of a stored file."""
        blob = store.blob_handle(file_id)
        if blob is None:
            if file_id in store:
                raise HTTPException(status_code=404, detail="File bytes not available on this device")
            raise HTTPException(status_code=404, detail="File not found")

        return Response(
            content=blob.data,
            media_type=blob.content_type,
            headers={
                "Content-Disposition": f"attachment; filename*=UTF-8''{quote(blob.name)}",
            },
        )

    @app.post("/files", response_model=UploadResult, tags=["Files"])
    async def upload_file(file: UploadFile = File(...)):
        """Store an uploaded file and return its id."""
        name = file.filename or "upload"
        data = await file.read()
        mime_type = file.content_type or guess_mime_type(name)

        file_id = store.put(name, mime_type, data)
        logger.info(f"Upload {name} stored as {file_id} ({len(data):,} bytes)")

        durable = True
        try:
            await store.wait_durable(file_id)
        except StoreIOError:
            durable = False

        return UploadResult(id=file_id, name=name, size=len(data), durable=durable)

    @app.delete("/files/{file_id}", response_model=DeleteResult, tags=["Files"])
    async def remove_file(file_id: str):
        """Delete a stored file."""
        try:
            removed = await store.delete(file_id)
        except StoreIOError:
            return DeleteResult(success=True, durable=False)

        if not removed:
            raise HTTPException(status_code=404, detail="File not found")
        return DeleteResult(success=True)

    return app


async def run_api_server(store: ContentStore, host: str = "0.0.0.0", port: int = 8080,
                         owns_store: bool = False):
    """
    Run the share API.

    Args:
        store: ContentStore to serve
        host: Host to bind to
        port: Port to listen on
        owns_store: Let the app open and close the store
    """
    import uvicorn

    app = create_app(store, owns_store=owns_store)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()
