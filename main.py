import argparse
import mimetypes
import os
import sys
from contextlib import asynccontextmanager
from email.utils import parsedate
from urllib.parse import quote

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, PlainTextResponse
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.staticfiles import NotModifiedResponse

import config
from app.errors import BadRequest, MethodNotAllowed, Unauthorized, UploadServerError, UploadTooLarge
from app.services.auth import AuthError, check_basic_auth
from app.services.storage_manager import StorageManager
from logger_config import setup_logger

# Logger setup
logger = setup_logger()

UPLOAD_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def check_content_length(request: Request, max_upload_size: int):
    """Reject bodies that announce a size beyond the upload limit before parsing them."""
    content_length = request.headers.get("content-length")
    if content_length is None:
        return

    try:
        content_length_value = int(content_length)
    except ValueError:
        raise BadRequest(f"Invalid Content-Length header: {content_length!r}")

    if content_length_value > max_upload_size + config.MAX_FORM_OVERHEAD:
        raise UploadTooLarge(f"Content-Length {content_length_value} exceeds limit {max_upload_size}")


def limit_request_body(request: Request, limit: int) -> Request:
    """Wrap ``request`` so reading more than ``limit`` body bytes raises UploadTooLarge.

    Applies while the multipart form is parsed, so chunked uploads without a
    Content-Length are cut off early instead of being spooled to the end.
    """
    received = 0

    async def receive():
        nonlocal received
        message = await request.receive()
        if message["type"] == "http.request":
            received += len(message.get("body", b""))
            if received > limit:
                raise UploadTooLarge(f"Request body exceeds {limit} bytes")
        return message

    return Request(request.scope, receive)


def is_not_modified(response_headers, request_headers) -> bool:
    """Whether a conditional GET can be answered with 304, as StaticFiles does."""
    if_none_match = request_headers.get("if-none-match")
    if if_none_match is not None:
        etag = response_headers.get("etag")
        return etag is not None and etag in [tag.strip(" W/") for tag in if_none_match.split(",")]

    if_modified_since = parsedate(request_headers.get("if-modified-since", ""))
    last_modified = parsedate(response_headers.get("last-modified", ""))
    return if_modified_since is not None and last_modified is not None and if_modified_since >= last_modified


def content_disposition(filename: str) -> str:
    quoted = quote(filename)
    if quoted == filename:
        return f'inline; filename="{filename}"'
    # Header values must be latin-1; keep the plain form with an escaped name
    return f"inline; filename=\"{quoted}\"; filename*=utf-8''{quoted}"


def create_app(cfg: config.ServerConfig) -> FastAPI:
    """Build the upload server for one immutable configuration."""
    storage_manager = StorageManager(cfg.upload_dir, cfg.staging_dir, cfg.max_upload_size)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await app.state.storage_manager.initialize()
        yield

    app = FastAPI(title="Upload Server", lifespan=lifespan)
    app.state.config = cfg
    app.state.storage_manager = storage_manager

    @app.exception_handler(UploadServerError)
    async def upload_server_error_handler(request: Request, exc: UploadServerError):
        return PlainTextResponse(exc.detail, status_code=exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=exc.headers)

    @app.api_route("/upload", methods=UPLOAD_METHODS)
    async def upload_file(request: Request):
        """Store the multipart field ``file`` and return its public URL as plain text."""
        cfg = request.app.state.config
        storage_manager = request.app.state.storage_manager

        if request.method != "POST":
            raise MethodNotAllowed(f"{request.method} /upload")

        try:
            check_basic_auth(request.headers.get("authorization"), cfg.username, cfg.password)
        except AuthError as e:
            logger.debug(f"Rejected upload from {request.client.host if request.client else '-'}: {e}")
            raise Unauthorized(str(e))

        check_content_length(request, cfg.max_upload_size)

        limited = limit_request_body(request, cfg.max_upload_size + config.MAX_FORM_OVERHEAD)
        async with limited.form() as form:
            upload = form.get("file")
            if not isinstance(upload, UploadFile):
                raise BadRequest("Multipart form has no 'file' field")

            logger.info(f"Receiving upload request for file: {upload.filename}")
            key, _ = await storage_manager.store(upload, upload.filename)

        return PlainTextResponse(storage_manager.public_url(key, cfg.access_prefix))

    @app.api_route(f"/{cfg.route_prefix}/{{year}}/{{month}}/{{day}}/{{filename}}", methods=["GET", "HEAD"])
    async def get_file(year: str, month: str, day: str, filename: str, request: Request):
        """Serve a stored file. No credentials are needed, the random name is the only secret."""
        storage_manager = request.app.state.storage_manager
        file_path, stat_result = await storage_manager.resolve(year, month, day, filename)

        content_type, _ = mimetypes.guess_type(filename)
        response = FileResponse(
            file_path,
            media_type=content_type or "application/octet-stream",
            headers={
                "Cache-Control": config.CACHE_CONTROL,
                "Content-Disposition": content_disposition(filename),
            },
            stat_result=stat_result,
        )
        if is_not_modified(response.headers, request.headers):
            return NotModifiedResponse(response.headers)
        return response

    return app


def main(argv=None):
    parser = argparse.ArgumentParser(description="Upload Server")
    parser.add_argument(
        "config_path",
        nargs="?",
        default=os.getenv("UPLOAD_SERVER_CONFIG", config.CONFIG_PATH),
        help="Path to the YAML config file",
    )
    args = parser.parse_args(argv)

    try:
        cfg = config.load_config(args.config_path)
    except config.ConfigError as e:
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)

    logger.info("Starting Upload Server...")
    logger.info(f"Upload directory: {cfg.upload_dir}")
    logger.info(f"Temporary directory: {cfg.staging_dir}")
    logger.info(f"Maximum upload size: {cfg.max_upload_size / (1024*1024):.2f} MB")
    logger.info(f"The server starts listening on {cfg.host}:{cfg.port}")
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port, timeout_keep_alive=config.KEEP_ALIVE_TIMEOUT)


if __name__ == "__main__":
    main()
