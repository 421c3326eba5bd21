from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
import os
import socket

DEFAULT_BIND_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_STORAGE_DIR = "static"
MAX_UPLOAD_SIZE = 32 << 20
SECRET_ENV_VAR = "UPLOAD_SECRET"
# Only fit for local testing; run_server warns when it is in use.
DEFAULT_UPLOAD_SECRET = "p4ssw0rd"


@dataclass(frozen=True)
class ServerConfig:
    """Immutable process-wide settings, built once before serving starts."""

    storage_dir: Path
    secret: str | None = None
    max_upload_size: int = MAX_UPLOAD_SIZE
    template_dir: Path | None = None
    endpoints: tuple[tuple[str, int], ...] = field(
        default=((DEFAULT_BIND_HOST, DEFAULT_PORT),)
    )
    uses_default_secret: bool = False

    @property
    def auth_enabled(self) -> bool:
        return self.secret is not None


def resolve_secret(environ: Mapping[str, str] | None = None) -> tuple[str, bool]:
    """Return ``(secret, is_default)`` from the environment."""
    env = os.environ if environ is None else environ
    value = env.get(SECRET_ENV_VAR)
    if value is None:
        return DEFAULT_UPLOAD_SECRET, True
    return value, False


def parse_listen_endpoint(value: str) -> tuple[str, int]:
    """Parse ``HOST:PORT``; an empty host means all interfaces."""
    host, sep, port_text = (value or "").strip().rpartition(":")
    if not sep:
        raise ValueError(f"--listen expects HOST:PORT, got {value!r}")
    if not port_text.strip().isdigit():
        raise ValueError(f"--listen port is not a number: {value!r}")
    port = int(port_text)
    if port < 1 or port > 65535:
        raise ValueError(f"--listen port must be in range 1-65535: {value!r}")
    return host.strip() or DEFAULT_BIND_HOST, port


def _split_csv(values: list[str]) -> list[str]:
    items: list[str] = []
    for raw in values:
        items.extend(part.strip() for part in (raw or "").split(",") if part.strip())
    return items


def build_bind_endpoints(
    host_args: list[str], port: int, listen_args: list[str], *, resolve: bool = True
) -> tuple[tuple[str, int], ...]:
    """Combine ``--host``/``--port``/``--listen`` into unique endpoints.

    ``--listen`` wins over ``--host`` when both are given. With ``resolve``
    every host is checked with ``getaddrinfo`` so typos fail at startup
    instead of at bind time.
    """
    if not (1 <= int(port) <= 65535):
        raise ValueError(f"--port must be in range 1-65535, got {port}")

    listen_items = _split_csv(listen_args)
    if listen_items:
        endpoints = [parse_listen_endpoint(item) for item in listen_items]
    else:
        hosts = _split_csv(host_args) or [DEFAULT_BIND_HOST]
        endpoints = [(h, int(port)) for h in hosts]

    unique = tuple(dict.fromkeys(endpoints))

    if resolve:
        for host, ep_port in unique:
            try:
                socket.getaddrinfo(host, ep_port, socket.AF_INET, socket.SOCK_STREAM)
            except socket.gaierror as exc:
                raise ValueError(
                    f"Invalid/unresolvable bind host '{host}' for port {ep_port}: {exc}"
                ) from exc
    return unique


def load_config(
    *,
    storage_dir: str | os.PathLike[str] = DEFAULT_STORAGE_DIR,
    endpoints: tuple[tuple[str, int], ...] = ((DEFAULT_BIND_HOST, DEFAULT_PORT),),
    template_dir: str | os.PathLike[str] | None = None,
    max_upload_size: int = MAX_UPLOAD_SIZE,
    auth: bool = True,
    environ: Mapping[str, str] | None = None,
) -> ServerConfig:
    if max_upload_size <= 0:
        raise ValueError(f"max upload size must be positive, got {max_upload_size}")
    secret: str | None = None
    is_default = False
    if auth:
        secret, is_default = resolve_secret(environ)
        try:
            secret.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise ValueError(f"{SECRET_ENV_VAR} is not valid UTF-8") from exc
    return ServerConfig(
        storage_dir=Path(storage_dir).resolve(),
        secret=secret,
        max_upload_size=int(max_upload_size),
        template_dir=Path(template_dir).resolve() if template_dir else None,
        endpoints=tuple(endpoints),
        uses_default_secret=is_default,
    )
