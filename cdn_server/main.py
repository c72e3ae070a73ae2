import html
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from string import Template
from typing import Optional
from urllib.parse import quote

import aiofiles
import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, Response, StreamingResponse
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

import config
from logger_config import setup_logger
from app.services.access_control import AccessControl
from app.services.content_addressing import is_content_hash
from app.services.filename_sanitizer import sanitize_filename
from app.services.storage_manager import (
    StorageManager,
    StoredFileNotFoundError,
    UnsafePathError,
    UploadTooLargeError,
)

# Static pages
PAGES_DIR = Path(__file__).resolve().parent / "app" / "pages"
INDEX_PAGE = (PAGES_DIR / "index.html").read_bytes()
UPLOAD_PAGE = (PAGES_DIR / "upload.html").read_bytes()
UPLOAD_COMPLETE_PAGE = Template((PAGES_DIR / "upload_complete.html").read_text(encoding="utf-8"))

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.storage_manager = StorageManager(Path(config.ROOT_DIR))
    await app.state.storage_manager.initialize()
    app.state.access_control = AccessControl(config.get_api_keys)
    yield


app = FastAPI(title="CDN Server", lifespan=lifespan)


def has_cors(path: str) -> bool:
    return path == "/upload" or path.startswith("/files/")


@app.exception_handler(StarletteHTTPException)
async def bare_status_handler(request: Request, exc: StarletteHTTPException):
    """Render every error as a bare status code, without a body."""
    headers = dict(exc.headers or {})
    if has_cors(request.url.path):
        headers.update(config.CORS_HEADERS)
    return Response(status_code=exc.status_code, headers=headers)


async def preflight():
    """Answer a CORS preflight request."""
    return Response(status_code=200, headers=config.CORS_HEADERS)


for preflight_path in ("/upload", "/files/latest/{name:path}", "/files/versioned/{rest:path}"):
    app.add_api_route(preflight_path, preflight, methods=["OPTIONS"], include_in_schema=False)


def check_content_length(request: Request):
    """Reject bodies declared larger than the upload ceiling."""
    content_length = request.headers.get("content-length")
    if content_length is None:
        # Chunked body, the ceiling is enforced while storing
        return

    try:
        content_length_value = int(content_length)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid Content-Length header")

    if content_length_value > config.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=413, detail="Upload too large")


def form_text(form: FormData, key: str) -> str:
    """Get a plain text form field, or an empty string."""
    value = form.get(key)
    return value if isinstance(value, str) else ""


def resolve_file_name(file_name: str, transport_name: Optional[str]) -> str:
    """Sanitize the display name, falling back to the multipart part's filename."""
    safe_name = sanitize_filename(file_name)
    if not safe_name:
        safe_name = sanitize_filename(transport_name or "")
    return safe_name


def content_disposition(file_name: str) -> str:
    if file_name.isascii() and file_name.isprintable():
        return f"attachment; filename={file_name}"
    # Header values must stay latin-1 without control characters
    return f"attachment; filename*=UTF-8''{quote(file_name, safe='')}"


@app.api_route("/", methods=["GET", "OPTIONS"])
async def index():
    return HTMLResponse(INDEX_PAGE)


@app.get("/upload")
async def upload_form():
    return HTMLResponse(UPLOAD_PAGE, headers=config.CORS_HEADERS)


@app.post("/upload")
async def upload_file(request: Request):
    """Store an uploaded file and answer with a page linking to it.

    Form fields:
        file: The file to upload
        versioned: "on" to store by content hash, anything else for latest
        fileName: Display name, defaults to the uploaded file's name
        apikey: Key that must be in the configured allow-list
    """
    storage_manager = request.app.state.storage_manager
    access_control = request.app.state.access_control

    check_content_length(request)

    async with request.form() as form:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            logger.info("Upload rejected: missing file part")
            raise HTTPException(status_code=400, detail="Missing file")

        versioned = form_text(form, "versioned") == "on"

        api_key = form_text(form, "apikey")
        if not api_key:
            logger.info("Upload rejected: missing API key")
            raise HTTPException(status_code=400, detail="Missing API key")

        if not access_control.authorize(api_key):
            raise HTTPException(status_code=401, detail="Invalid API key")

        file_name = resolve_file_name(form_text(form, "fileName"), upload.filename)
        if not file_name:
            logger.info("Upload rejected: no usable file name")
            raise HTTPException(status_code=400, detail="Missing file name")

        logger.info(f"Receiving {'versioned' if versioned else 'latest'} upload: {file_name}")

        try:
            if versioned:
                # The hash decides the path, so the whole payload is needed first
                data = await upload.read(storage_manager.max_upload_size + 1)
                stored = await storage_manager.save_versioned(data, file_name)
            else:
                stored = await storage_manager.save_unversioned(file_name, upload)
        except UploadTooLargeError:
            logger.info(f"Upload rejected: {file_name} exceeds the size limit")
            raise HTTPException(status_code=413, detail="Upload too large")
        except UnsafePathError as e:
            logger.warning(f"Upload rejected: {e}")
            raise HTTPException(status_code=400, detail="Invalid file name")
        except OSError as e:
            logger.error(f"Error storing upload {file_name}: {str(e)}", exc_info=True)
            raise HTTPException(status_code=500, detail="Error storing upload")

    logger.info(f"Stored {stored.mode.value} file {stored.identifier} ({stored.size} bytes)")

    anchor = f"<a href='{html.escape(stored.link)}'>{html.escape(stored.display_name)}</a>"
    return HTMLResponse(UPLOAD_COMPLETE_PAGE.safe_substitute(link=anchor), headers=config.CORS_HEADERS)


@app.get("/files/latest/{name:path}")
async def get_latest(name: str, request: Request):
    """Serve the most recent upload stored under name."""
    storage_manager = request.app.state.storage_manager

    try:
        stored = await storage_manager.open_unversioned(name)
    except (UnsafePathError, StoredFileNotFoundError):
        logger.info(f"Latest file not found: {name!r}")
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(stored.path, headers=config.CORS_HEADERS)


@app.get("/files/versioned/{file_hash}/{file_name}")
async def get_versioned(file_hash: str, file_name: str, request: Request):
    """Download a versioned file. file_name only names the download."""
    storage_manager = request.app.state.storage_manager

    if not is_content_hash(file_hash):
        raise HTTPException(status_code=404, detail="File not found")

    try:
        stored = await storage_manager.open_versioned(file_hash, file_name)
    except (UnsafePathError, StoredFileNotFoundError):
        logger.info(f"Versioned file not found: {file_hash}")
        raise HTTPException(status_code=404, detail="File not found")

    headers = dict(config.CORS_HEADERS)
    headers["Content-Disposition"] = content_disposition(file_name)
    headers["Content-Length"] = str(stored.size)
    headers["Content-Transfer-Encoding"] = "binary"

    async def file_iterator():
        async with aiofiles.open(stored.path, 'rb') as file:
            while chunk := await file.read(config.CHUNK_SIZE):
                yield chunk

    return StreamingResponse(
        file_iterator(),
        media_type="application/octet-stream",
        headers=headers
    )


@app.get("/files/versioned/{rest:path}")
async def get_versioned_incomplete(rest: str):
    """Both the hash and the file name segments are required."""
    raise HTTPException(status_code=400, detail="Expected /files/versioned/{hash}/{fileName}")


def run():
    try:
        port = config.get_port()
    except config.ConfigurationError as e:
        logger.critical(str(e))
        sys.exit(1)

    logger.info("Starting CDN Server...")
    logger.info(f"Root directory: {config.ROOT_DIR}")
    logger.info(f"Maximum upload size: {config.MAX_UPLOAD_SIZE / (1024*1024):.2f} MB")
    uvicorn.run(app, host=config.HOST, port=port, proxy_headers=True, forwarded_allow_ips="*")


if __name__ == "__main__":
    run()
