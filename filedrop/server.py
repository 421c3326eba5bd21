from __future__ import annotations

from functools import partial
import contextlib
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse
import logging
import platform
import shutil
import socket
import threading
import time

from . import __version__
from .config import ServerConfig
from .handlers import BUFFER_SIZE, Dispatcher, Request, Response
from .logs import format_bytes

logger = logging.getLogger(__name__)


class FileDropRequestHandler(BaseHTTPRequestHandler):
    """Adapts ``http.server`` requests to the dispatcher."""

    server_version = f"FileDrop/{__version__}"

    def __init__(self, *args, dispatcher: Dispatcher, **kwargs) -> None:
        self.dispatcher = dispatcher
        super().__init__(*args, **kwargs)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        logger.debug("%s - %s", self._client_ip(), format % args)

    def _client_ip(self) -> str:
        return (
            self.client_address[0] if self.client_address else "unknown"
        ) or "unknown"

    def _send_response(self, response: Response) -> None:
        try:
            self.send_response(response.status)
            self.send_header("Content-Type", response.content_type)
            if response.stream is None:
                self.send_header("Content-Length", str(len(response.body)))
            if not any(key == "Last-Modified" for key, _ in response.headers):
                self.send_header("Cache-Control", "no-store")
            for key, value in response.headers:
                self.send_header(key, value)
            self.end_headers()
            if self.command == "HEAD":
                return
            if response.stream is not None:
                shutil.copyfileobj(response.stream, self.wfile, BUFFER_SIZE)
            elif response.body:
                self.wfile.write(response.body)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("client %s went away before the response was sent", self._client_ip())
        finally:
            if response.stream is not None:
                response.stream.close()

    def _handle(self) -> None:
        request = Request(
            method=self.command,
            path=urlparse(self.path).path,
            headers=self.headers,
            body=self.rfile,
            client_ip=self._client_ip(),
        )
        self._send_response(self.dispatcher.dispatch(request))

    do_GET = _handle
    do_HEAD = _handle
    do_POST = _handle
    do_PUT = _handle
    do_PATCH = _handle
    do_DELETE = _handle
    do_OPTIONS = _handle


def make_server(config: ServerConfig, host: str, port: int) -> ThreadingHTTPServer:
    dispatcher = Dispatcher.from_config(config)
    handler = partial(FileDropRequestHandler, dispatcher=dispatcher)
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    return server


def local_ipv4_addresses() -> list[str]:
    """Non-loopback IPv4 addresses of this host, for the access URLs."""
    found: set[str] = set()
    with contextlib.suppress(OSError):
        found.update(
            info[4][0]
            for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
        )
    # A UDP connect picks the outgoing interface without sending anything.
    with contextlib.suppress(OSError), socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.connect(("8.8.8.8", 80))
        found.add(sock.getsockname()[0])
    return sorted(ip for ip in found if ip and not ip.startswith("127."))


def print_banner(config: ServerConfig) -> None:
    local_ips = local_ipv4_addresses()
    label_w = 22

    def _print_kv(label: str, value: str) -> None:
        print(f"{label + ':':<{label_w}} {value}")

    print("\n" + "=" * 60)
    print("File drop server started")
    print("=" * 60)
    _print_kv("Python", platform.python_version())
    _print_kv("OS", platform.system())
    _print_kv("Local IPv4s", ", ".join(local_ips) if local_ips else "-")
    _print_kv("Storage path", str(config.storage_dir))
    _print_kv("Upload limit", format_bytes(config.max_upload_size))
    if not config.auth_enabled:
        auth = "disabled"
    elif config.uses_default_secret:
        auth = "default password (set UPLOAD_SECRET!)"
    else:
        auth = "UPLOAD_SECRET"
    _print_kv("Upload password", auth)
    if config.template_dir:
        _print_kv("Templates", str(config.template_dir))
    print("Bindings:")
    for host, port in config.endpoints:
        print(f"    - {host}:{port}")
    print("\nAccess URLs:")
    for host, port in config.endpoints:
        if host in ("", "0.0.0.0"):
            print(f"    - local    http://localhost:{port}")
            for ip in local_ips[:5]:
                print(f"    - network  http://{ip}:{port}")
        else:
            print(f"    - host     http://{host}:{port}")
    print()
    _print_kv("To stop", "Ctrl+C")
    print("=" * 60 + "\n")


def run_server(config: ServerConfig) -> None:
    config.storage_dir.mkdir(parents=True, exist_ok=True)
    if config.uses_default_secret:
        logger.warning(
            "UPLOAD_SECRET is not set; uploads are protected by the built-in default password"
        )
    print_banner(config)

    servers: list[ThreadingHTTPServer] = []
    for host, port in config.endpoints:
        try:
            servers.append(make_server(config, host, port))
        except OSError as exc:
            logger.error("Failed to bind %s:%s -> %s", host, port, exc)

    if not servers:
        raise SystemExit("No server socket could be started. Check host/port values.")

    for server in servers:
        threading.Thread(target=server.serve_forever, daemon=True).start()

    try:
        while True:
            time.sleep(0.5)
    except KeyboardInterrupt:
        logger.info("Shutting down server...")
        for server in servers:
            server.shutdown()
            server.server_close()
