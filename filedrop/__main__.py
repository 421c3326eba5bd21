from __future__ import annotations

import argparse

from .config import (
    DEFAULT_BIND_HOST,
    DEFAULT_PORT,
    DEFAULT_STORAGE_DIR,
    MAX_UPLOAD_SIZE,
    SECRET_ENV_VAR,
    ServerConfig,
    build_bind_endpoints,
    load_config,
)
from .logs import configure_logging
from .server import run_server


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filedrop",
        description="HTTP file drop: upload through a web form, list and download files.",
    )
    parser.add_argument(
        "--host",
        type=str,
        action="append",
        default=[],
        help=(
            "Host/IP to bind with --port. Repeatable or comma-separated "
            f"(default: {DEFAULT_BIND_HOST})"
        ),
    )
    parser.add_argument(
        "--listen",
        type=str,
        action="append",
        default=[],
        help="Full bind endpoint HOST:PORT. Repeatable or comma-separated.",
    )
    parser.add_argument(
        "-p",
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"TCP port to listen on (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--storage-dir",
        default=DEFAULT_STORAGE_DIR,
        help=f"Directory uploads are stored in and served from (default: {DEFAULT_STORAGE_DIR})",
    )
    parser.add_argument(
        "--template-dir",
        default=None,
        help="Load index.html, upload.html and listen.html from this directory",
    )
    parser.add_argument(
        "--max-upload-size",
        type=int,
        default=MAX_UPLOAD_SIZE,
        help=f"Largest accepted request body in bytes (default: {MAX_UPLOAD_SIZE})",
    )
    parser.add_argument(
        "--no-auth",
        action="store_true",
        help=f"Accept uploads without the {SECRET_ENV_VAR} password",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity (default: INFO)",
    )
    return parser


def parse_config(argv: list[str] | None = None) -> tuple[ServerConfig, str]:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        endpoints = build_bind_endpoints(args.host, args.port, args.listen)
    except ValueError as exc:
        parser.error(str(exc))
    if args.max_upload_size <= 0:
        parser.error("--max-upload-size must be > 0")
    try:
        config = load_config(
            storage_dir=args.storage_dir,
            endpoints=endpoints,
            template_dir=args.template_dir,
            max_upload_size=args.max_upload_size,
            auth=not args.no_auth,
        )
    except ValueError as exc:
        parser.error(str(exc))
    return config, args.log_level


def main(argv: list[str] | None = None) -> None:
    config, log_level = parse_config(argv)
    configure_logging(log_level)
    run_server(config)


if __name__ == "__main__":
    main()
