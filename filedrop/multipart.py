"""Decoders for form bodies held in memory (multipart and urlencoded)."""

from __future__ import annotations

from typing import NamedTuple
from urllib.parse import parse_qsl
import re

_PARAM_RE = re.compile(r';\s*([A-Za-z0-9_.*-]+)\s*=\s*("(?:[^"\\]|\\.)*"|[^;]*)')


class MultipartError(ValueError):
    pass


class UploadedFile(NamedTuple):
    filename: str
    content_type: str
    data: bytes


class FormData(NamedTuple):
    fields: dict[str, str]
    files: dict[str, UploadedFile]


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = re.sub(r'\\(["\\])', r"\1", value[1:-1])
    return value


def parse_header_params(value: str) -> tuple[str, dict[str, str]]:
    """Split ``main; key="value"; ...`` into the main value and its params."""
    main, _, _rest = value.partition(";")
    params: dict[str, str] = {}
    for match in _PARAM_RE.finditer(value[len(main):]):
        params.setdefault(match.group(1).lower(), _unquote(match.group(2)))
    return main.strip().lower(), params


def get_boundary(content_type: str | None) -> bytes:
    if not content_type:
        raise MultipartError("Content-Type header missing")
    mime, params = parse_header_params(content_type)
    if mime != "multipart/form-data":
        raise MultipartError(f"not multipart/form-data: {mime or '?'}")
    boundary = params.get("boundary", "")
    if not boundary:
        raise MultipartError("no boundary in Content-Type")
    if len(boundary) > 200:
        raise MultipartError("boundary too long")
    return boundary.encode("latin-1", errors="replace")


def _split_parts(body: bytes, boundary: bytes) -> list[bytes]:
    delimiter = b"--" + boundary
    start = body.find(delimiter)
    if start == -1:
        raise MultipartError("opening boundary not found")
    if start > 0 and body[start - 2:start] != b"\r\n":
        raise MultipartError("opening boundary not at line start")

    parts: list[bytes] = []
    pos = start + len(delimiter)
    while True:
        if body.startswith(b"--", pos):
            return parts
        eol = body.find(b"\r\n", pos)
        if eol == -1:
            raise MultipartError("truncated multipart body")
        # Only transport padding is allowed after a delimiter.
        if body[pos:eol].strip(b" \t"):
            raise MultipartError("garbage after boundary")
        pos = eol + 2
        end = body.find(b"\r\n" + delimiter, pos)
        if end == -1:
            raise MultipartError("closing boundary not found")
        parts.append(body[pos:end])
        pos = end + 2 + len(delimiter)


def _parse_part_headers(blob: bytes) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in blob.decode("utf-8", errors="replace").split("\r\n"):
        if not line:
            continue
        if ":" not in line:
            raise MultipartError(f"malformed part header: {line[:60]!r}")
        key, value = line.split(":", 1)
        headers[key.strip().lower()] = value.strip()
    return headers


def parse_multipart(content_type: str | None, body: bytes) -> FormData:
    """Decode ``body`` into text fields and file parts.

    A part is a file when its ``Content-Disposition`` carries a ``filename``
    parameter, even an empty one. Repeated names keep their first value.
    Parts without a ``name`` are ignored.
    """
    boundary = get_boundary(content_type)
    fields: dict[str, str] = {}
    files: dict[str, UploadedFile] = {}

    for raw in _split_parts(body, boundary):
        if raw.startswith(b"\r\n"):
            header_blob, data = b"", raw[2:]
        else:
            header_blob, sep, data = raw.partition(b"\r\n\r\n")
            if not sep:
                raise MultipartError("part without header terminator")
        headers = _parse_part_headers(header_blob)

        disposition, params = parse_header_params(
            headers.get("content-disposition", "")
        )
        if disposition != "form-data":
            raise MultipartError("part without form-data disposition")
        name = params.get("name")
        if not name:
            continue

        if "filename" in params:
            files.setdefault(
                name,
                UploadedFile(
                    filename=params["filename"],
                    content_type=headers.get(
                        "content-type", "application/octet-stream"
                    ),
                    data=data,
                ),
            )
        else:
            fields.setdefault(name, data.decode("utf-8", errors="replace"))

    return FormData(fields=fields, files=files)


def parse_form(content_type: str | None, body: bytes) -> FormData:
    """Decode a POST body that is either multipart or urlencoded.

    Urlencoded bodies only carry text fields, so they never yield files.
    """
    mime, _ = parse_header_params(content_type or "")
    if mime == "application/x-www-form-urlencoded":
        fields: dict[str, str] = {}
        for key, value in parse_qsl(
            body.decode("utf-8", errors="replace"), keep_blank_values=True
        ):
            fields.setdefault(key, value)
        return FormData(fields=fields, files={})
    return parse_multipart(content_type, body)
