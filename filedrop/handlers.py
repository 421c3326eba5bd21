"""Request handlers, the auth gate and the dispatcher.

Handlers take a :class:`Request` and either return a complete
:class:`Response` or raise :class:`HandlerError`. They never write to the
socket themselves, so an error can always be turned into a clean status
response by :class:`Dispatcher`.
"""

from __future__ import annotations

from http import HTTPStatus
from pathlib import Path
from typing import BinaryIO, Callable, Mapping, NamedTuple
from urllib.parse import unquote
import datetime
import email.utils
import hmac
import logging
import mimetypes
import os
import time

from .config import MAX_UPLOAD_SIZE, ServerConfig
from .logs import ANSI_GREEN, format_bytes
from .multipart import FormData, MultipartError, parse_form
from .templates import FileEntry, TemplateError, TemplateRenderer
from .tokens import form_token

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024 * 1024
MIB = 1024 * 1024
FILE_FIELD = "uploadfile"
PASSWORD_FIELD = "password"
STATIC_PREFIX = "/static/"
# HTTPStatus renamed this member across Python versions.
PAYLOAD_TOO_LARGE = 413

HTML = "text/html; charset=utf-8"
TEXT = "text/plain; charset=utf-8"


class HandlerError(Exception):
    """A failed request: ``status`` goes to the client, ``message`` to the log."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = int(status)
        self.message = message


class Request(NamedTuple):
    method: str
    path: str
    headers: Mapping[str, str]
    body: BinaryIO
    client_ip: str = "unknown"


class Response(NamedTuple):
    status: int
    body: bytes = b""
    content_type: str = HTML
    headers: tuple[tuple[str, str], ...] = ()
    # Sent instead of body when set; the handler supplies Content-Length.
    stream: BinaryIO | None = None


Handler = Callable[[Request], Response]


def status_text(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown Status"


def error_response(status: int, headers: tuple[tuple[str, str], ...] = ()) -> Response:
    body = f"{status_text(status)}\n".encode("utf-8")
    return Response(status, body, TEXT, (("X-Content-Type-Options", "nosniff"),) + headers)


def is_plain_filename(name: str) -> bool:
    """True for a single path component that cannot escape its directory."""
    if not name or name in (".", ".."):
        return False
    return not any(ch in name for ch in ("/", "\\", "\x00"))


def format_size_mib(size: int) -> str:
    return f"{size / MIB:.2f}"


class IndexHandler:
    def __init__(self, renderer: TemplateRenderer) -> None:
        self.renderer = renderer

    def __call__(self, request: Request) -> Response:
        if request.method != "GET":
            raise HandlerError(HTTPStatus.BAD_REQUEST, "bad request to index")
        try:
            body = self.renderer.index()
        except TemplateError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to render index template: {exc}"
            ) from exc
        return Response(HTTPStatus.OK, body)


class ListingHandler:
    """Lists the storage directory with sizes in MiB, sorted by name."""

    def __init__(self, storage_dir: Path, renderer: TemplateRenderer) -> None:
        self.storage_dir = storage_dir
        self.renderer = renderer

    def entries(self) -> list[FileEntry]:
        files: list[FileEntry] = []
        with os.scandir(self.storage_dir) as it:
            for entry in it:
                try:
                    size = entry.stat().st_size
                except FileNotFoundError:
                    # removed between scandir and stat
                    continue
                files.append(FileEntry(entry.name, format_size_mib(size)))
        files.sort(key=lambda f: f.name)
        return files

    def __call__(self, request: Request) -> Response:
        if request.method != "GET":
            raise HandlerError(HTTPStatus.BAD_REQUEST, "bad request to listen")
        try:
            files = self.entries()
        except OSError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to read storage directory {self.storage_dir}: {exc}",
            ) from exc
        try:
            body = self.renderer.listing(files)
        except TemplateError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to render listen template: {exc}"
            ) from exc
        return Response(HTTPStatus.OK, body)


class UploadHandler:
    """Serves the upload form and stores submitted files.

    ``credential`` is only passed by :class:`AuthGate`. When it is given the
    submitted ``password`` field must match it exactly, otherwise the request
    ends with 401 before anything touches the storage directory.
    """

    def __init__(
        self,
        storage_dir: Path,
        renderer: TemplateRenderer,
        *,
        max_upload_size: int = MAX_UPLOAD_SIZE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage_dir = storage_dir
        self.renderer = renderer
        self.max_upload_size = max_upload_size
        self.clock = clock

    def render_form(self, status: int) -> Response:
        token = form_token(self.clock())
        try:
            body = self.renderer.upload_form(token)
        except TemplateError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to render upload form template: {exc}",
            ) from exc
        return Response(status, body)

    def __call__(self, request: Request, credential: str | None = None) -> Response:
        if request.method == "GET":
            return self.render_form(HTTPStatus.OK)
        if request.method == "POST":
            return self.handle_post(request, credential)
        raise HandlerError(HTTPStatus.BAD_REQUEST, f"bad request to upload: {request.method}")

    def read_body(self, request: Request) -> bytes:
        raw_length = request.headers.get("Content-Length") or "0"
        try:
            length = int(raw_length)
        except ValueError as exc:
            raise HandlerError(
                HTTPStatus.BAD_REQUEST, f"invalid Content-Length: {raw_length!r}"
            ) from exc
        if length < 0:
            raise HandlerError(HTTPStatus.BAD_REQUEST, f"invalid Content-Length: {length}")
        if length > self.max_upload_size:
            raise HandlerError(
                PAYLOAD_TOO_LARGE,
                f"upload of {format_bytes(length)} exceeds limit of "
                f"{format_bytes(self.max_upload_size)}",
            )
        try:
            data = request.body.read(length) if length else b""
        except OSError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to read request body: {exc}"
            ) from exc
        if len(data) != length:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"client disconnected after {len(data)} of {length} bytes",
            )
        return data

    def handle_post(self, request: Request, credential: str | None) -> Response:
        body = self.read_body(request)
        form: FormData | None = None
        parse_error: MultipartError | None = None
        try:
            form = parse_form(request.headers.get("Content-Type"), body)
        except MultipartError as exc:
            parse_error = exc

        # An unreadable form counts as a missing password.
        if credential is not None:
            submitted = form.fields.get(PASSWORD_FIELD) if form is not None else None
            if submitted is None or not hmac.compare_digest(
                submitted.encode("utf-8"), credential.encode("utf-8")
            ):
                return Response(HTTPStatus.UNAUTHORIZED, b"", TEXT)

        if form is None:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to parse multipart form: {parse_error}"
            ) from parse_error

        uploaded = form.files.get(FILE_FIELD)
        if uploaded is None or not uploaded.filename:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"failed to retrieve file from POST request: no {FILE_FIELD!r} part",
            )
        if not is_plain_filename(uploaded.filename):
            raise HandlerError(
                HTTPStatus.BAD_REQUEST, f"rejected upload filename {uploaded.filename!r}"
            )

        dest = self.storage_dir / uploaded.filename
        try:
            local = open(dest, "wb")
        except OSError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to open local file {dest}: {exc}"
            ) from exc
        written = 0
        try:
            with local:
                view = memoryview(uploaded.data)
                while written < len(view):
                    n = local.write(view[written:written + BUFFER_SIZE])
                    if not n:
                        break
                    written += n
        except OSError as exc:
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to write {dest}: {exc}"
            ) from exc
        if written != len(uploaded.data):
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR,
                f"short write to {dest}: {written} of {len(uploaded.data)} bytes",
            )

        logger.info(
            "Stored %s (%s) from %s",
            uploaded.filename,
            format_bytes(written),
            request.client_ip,
            extra={"color": ANSI_GREEN},
        )
        return self.render_form(HTTPStatus.CREATED)


class AuthGate:
    """Hands the configured credential to the wrapped upload handler."""

    def __init__(self, credential: str, handler: UploadHandler) -> None:
        self.credential = credential
        self.handler = handler

    def __call__(self, request: Request) -> Response:
        return self.handler(request, credential=self.credential)


class StaticFiles:
    """Serves stored files under ``/static/<name>``.

    Files are streamed by the server from an open handle. ``If-Modified-Since``
    is honoured with 304; byte ranges are not supported.
    """

    allowed_methods = ("GET", "HEAD")

    def __init__(self, storage_dir: Path) -> None:
        self.storage_dir = storage_dir

    def __call__(self, request: Request) -> Response:
        if request.method not in self.allowed_methods:
            return error_response(
                HTTPStatus.METHOD_NOT_ALLOWED, (("Allow", ", ".join(self.allowed_methods)),)
            )
        name = unquote(request.path[len(STATIC_PREFIX):])
        if not is_plain_filename(name):
            return error_response(HTTPStatus.NOT_FOUND)
        path = self.storage_dir / name
        if not path.is_file():
            return error_response(HTTPStatus.NOT_FOUND)
        try:
            f = open(path, "rb")
        except (FileNotFoundError, IsADirectoryError):
            return error_response(HTTPStatus.NOT_FOUND)
        except PermissionError:
            return error_response(HTTPStatus.FORBIDDEN)
        try:
            st = os.fstat(f.fileno())
        except OSError as exc:
            f.close()
            raise HandlerError(
                HTTPStatus.INTERNAL_SERVER_ERROR, f"failed to stat {path}: {exc}"
            ) from exc
        content_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
        last_modified = email.utils.formatdate(st.st_mtime, usegmt=True)

        if self._not_modified(request, st.st_mtime):
            f.close()
            return Response(
                HTTPStatus.NOT_MODIFIED, b"", content_type, (("Last-Modified", last_modified),)
            )
        return Response(
            HTTPStatus.OK,
            b"",
            content_type,
            (("Content-Length", str(st.st_size)), ("Last-Modified", last_modified)),
            stream=f,
        )

    @staticmethod
    def _not_modified(request: Request, mtime: float) -> bool:
        since = request.headers.get("If-Modified-Since")
        if not since:
            return False
        try:
            since_dt = email.utils.parsedate_to_datetime(since)
        except (TypeError, ValueError, IndexError, OverflowError):
            return False
        if since_dt.tzinfo is None:
            since_dt = since_dt.replace(tzinfo=datetime.timezone.utc)
        return int(mtime) <= since_dt.timestamp()


class Dispatcher:
    """Routes requests and turns :class:`HandlerError` into status responses."""

    def __init__(self, routes: dict[str, Handler], static: Handler | None = None) -> None:
        self.routes = routes
        self.static = static

    @classmethod
    def from_config(cls, config: ServerConfig, renderer: TemplateRenderer | None = None) -> "Dispatcher":
        renderer = renderer or TemplateRenderer(config.template_dir)
        upload: Handler = UploadHandler(
            config.storage_dir, renderer, max_upload_size=config.max_upload_size
        )
        if config.secret is not None:
            upload = AuthGate(config.secret, upload)
        return cls(
            {
                "/": IndexHandler(renderer),
                "/upload": upload,
                "/listen": ListingHandler(config.storage_dir, renderer),
            },
            static=StaticFiles(config.storage_dir),
        )

    def resolve(self, path: str) -> Handler | None:
        handler = self.routes.get(path)
        if handler is None and self.static is not None and path.startswith(STATIC_PREFIX):
            handler = self.static
        return handler

    def dispatch(self, request: Request) -> Response:
        handler = self.resolve(request.path)
        if handler is None:
            return error_response(HTTPStatus.NOT_FOUND)
        try:
            return handler(request)
        except HandlerError as exc:
            logger.error(
                "%s %s -> %d: %s", request.method, request.path, exc.status, exc.message
            )
            return error_response(exc.status)
