"""Small HTTP file-drop server: upload through a form, list and download."""

__version__ = "2026.10"
