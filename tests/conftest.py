import threading

import pytest

from filedrop.config import ServerConfig
from filedrop.server import make_server

BOUNDARY = "----filedropTestBoundary7MA4YWxk"


def encode_multipart(fields=None, files=None, boundary=BOUNDARY):
    """Build a multipart/form-data body the way browsers send it."""
    lines = []
    for name, value in (fields or {}).items():
        lines.append(f"--{boundary}\r\n".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"\r\n\r\n'.encode())
        lines.append(value.encode("utf-8") + b"\r\n")
    for name, (filename, data) in (files or {}).items():
        lines.append(f"--{boundary}\r\n".encode())
        lines.append(
            f'Content-Disposition: form-data; name="{name}"; filename="{filename}"\r\n'.encode()
        )
        lines.append(b"Content-Type: application/octet-stream\r\n\r\n")
        lines.append(data + b"\r\n")
    lines.append(f"--{boundary}--\r\n".encode())
    return b"".join(lines), f"multipart/form-data; boundary={boundary}"


@pytest.fixture
def multipart():
    return encode_multipart


@pytest.fixture
def storage_dir(tmp_path):
    path = tmp_path / "static"
    path.mkdir()
    return path


@pytest.fixture
def live_server():
    """Start a real server for a config on an ephemeral port, return its base URL."""
    servers = []

    def _start(config: ServerConfig) -> str:
        server = make_server(config, "127.0.0.1", 0)
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        host, port = server.server_address[:2]
        return f"http://{host}:{port}"

    yield _start

    for server in servers:
        server.shutdown()
        server.server_close()
