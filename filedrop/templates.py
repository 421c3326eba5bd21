from __future__ import annotations

from pathlib import Path
from typing import Iterable, NamedTuple
from urllib.parse import quote
import html
import re

_PLACEHOLDER_RE = re.compile(r"__([A-Z][A-Z0-9_]*)__")


class TemplateError(Exception):
    pass


class FileEntry(NamedTuple):
    name: str
    size: str


class TemplateRenderer:
    """Renders the HTML pages.

    With ``template_dir`` set, ``<template_dir>/<name>.html`` is read on every
    render so edits show up without a restart; a missing or unreadable file
    raises :class:`TemplateError`. Otherwise the built-in pages are used.
    Values are HTML-escaped, except the pre-rendered ``FILES`` rows.
    """

    def __init__(self, template_dir: Path | None = None) -> None:
        self.template_dir = template_dir

    def _load(self, name: str) -> str:
        if self.template_dir is None:
            return _BUILTIN_TEMPLATES[name]
        path = self.template_dir / f"{name}.html"
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise TemplateError(f"cannot load template {path}: {exc}") from exc

    def _render(self, name: str, raw: dict[str, str] | None = None, **values: str) -> bytes:
        source = self._load(name)
        replacements = {k.upper(): html.escape(str(v)) for k, v in values.items()}
        replacements.update(raw or {})

        def _sub(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in replacements:
                raise TemplateError(f"template {name!r} uses unknown placeholder __{key}__")
            return replacements[key]

        return _PLACEHOLDER_RE.sub(_sub, source).encode("utf-8")

    def index(self) -> bytes:
        return self._render("index")

    def upload_form(self, token: str) -> bytes:
        return self._render("upload", token=token)

    def listing(self, entries: Iterable[FileEntry]) -> bytes:
        rows = [
            _ROW_TEMPLATE.format(
                href=html.escape(quote(entry.name), quote=True),
                name=html.escape(entry.name),
                size=html.escape(entry.size),
            )
            for entry in entries
        ]
        return self._render(
            "listen",
            raw={"FILES": "\n".join(rows) if rows else _EMPTY_ROW},
            count=str(len(rows)),
        )


_ROW_TEMPLATE = (
    '      <tr><td><a href="/static/{href}">{name}</a></td>'
    '<td class="num">{size} MB</td></tr>'
)
_EMPTY_ROW = '      <tr><td colspan="2" class="hint">No files uploaded yet.</td></tr>'

_STYLE = """
  <style>
    :root { --bg: #0b1220; --text: #e8eefc; --muted: #aab6d3; --border: rgba(255,255,255,.12); }
    * { box-sizing: border-box; }
    body {
      margin: 0;
      font-family: system-ui, -apple-system, Segoe UI, Roboto, Arial, sans-serif;
      background: radial-gradient(1200px 700px at 20% 0%, #1b2a57 0%, var(--bg) 55%) fixed;
      color: var(--text);
    }
    .wrap { max-width: 760px; margin: 0 auto; padding: 22px 16px 60px; }
    .card {
      background: rgba(255,255,255,.04);
      border: 1px solid var(--border);
      border-radius: 12px;
      padding: 14px;
      margin-top: 18px;
    }
    a { color: #7dd3fc; }
    .hint { color: var(--muted); font-size: 14px; }
    input { margin: 6px 0; color: var(--text); background: rgba(255,255,255,.04);
            border: 1px solid var(--border); border-radius: 8px; padding: 8px; }
    table { width: 100%; border-collapse: collapse; }
    td, th { text-align: left; padding: 6px 4px; border-bottom: 1px solid var(--border); }
    .num { text-align: right; font-family: ui-monospace, Menlo, Consolas, monospace; }
  </style>"""

_INDEX_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>File Drop</title>""" + _STYLE + """
</head>
<body>
  <div class="wrap">
    <h1>File Drop</h1>
    <div class="card">
      <p><a href="/upload">Upload a file</a></p>
      <p><a href="/listen">Browse uploaded files</a></p>
    </div>
  </div>
</body>
</html>
"""

_UPLOAD_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Upload</title>""" + _STYLE + """
</head>
<body>
  <div class="wrap">
    <h1>Upload</h1>
    <form class="card" enctype="multipart/form-data" action="/upload" method="post">
      <input type="file" name="uploadfile" required /><br />
      <input type="password" name="password" placeholder="Password" /><br />
      <input type="hidden" name="token" value="__TOKEN__" />
      <input type="submit" value="Upload" />
    </form>
    <p class="hint"><a href="/listen">Uploaded files</a> &middot; <a href="/">Home</a></p>
  </div>
</body>
</html>
"""

_LISTEN_TEMPLATE = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>Uploaded files</title>""" + _STYLE + """
</head>
<body>
  <div class="wrap">
    <h1>Uploaded files</h1>
    <p class="hint">__COUNT__ file(s)</p>
    <table class="card">
      <tr><th>Name</th><th class="num">Size</th></tr>
__FILES__
    </table>
    <p class="hint"><a href="/upload">Upload</a> &middot; <a href="/">Home</a></p>
  </div>
</body>
</html>
"""

_BUILTIN_TEMPLATES = {
    "index": _INDEX_TEMPLATE,
    "upload": _UPLOAD_TEMPLATE,
    "listen": _LISTEN_TEMPLATE,
}
