"""Base request handler shared by the Vercel functions in ``api/``."""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler
from typing import Any, Dict, Tuple
from urllib.parse import parse_qs, urlparse

from config.settings import Settings, get_settings
from sellhub_backend import dump_json

LOGGER = logging.getLogger(__name__)

logging.basicConfig(
    level=getattr(logging, str(get_settings().log_level).upper(), logging.INFO)
)


class SellhubRequestHandler(BaseHTTPRequestHandler):
    """Answers CORS preflight, gates methods and writes JSON responses.

    Subclasses set ``allowed_method`` and implement :meth:`respond`, which
    returns the ``(status, payload)`` pair produced by
    :func:`sellhub_backend.execute`.
    """

    allowed_method = "GET"

    def settings(self) -> Settings:
        return get_settings()

    def respond(self) -> Tuple[int, Dict[str, Any]]:  # pragma: no cover - abstract
        raise NotImplementedError

    def query_param(self, name: str) -> str:
        values = parse_qs(urlparse(self.path).query).get(name)
        return values[0] if values else ""

    def read_json_body(self) -> Dict[str, Any]:
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            length = 0
        raw_body = self.rfile.read(length) if length > 0 else b""
        if not raw_body:
            return {}
        try:
            payload = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return {}
        return payload if isinstance(payload, dict) else {}

    def _send_cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", f"{self.allowed_method}, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")

    def _send_json(self, status: int, payload: Dict[str, Any]) -> None:
        body = dump_json(payload)
        self.send_response(status)
        self._send_cors_headers()
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _dispatch(self) -> None:
        LOGGER.info("%s called: %s %s", type(self).__module__, self.command, self.path)
        if self.command != self.allowed_method:
            self._send_json(405, {"error": "Method not allowed"})
            return
        status, payload = self.respond()
        self._send_json(status, payload)

    def do_OPTIONS(self) -> None:  # noqa: N802 - interface defined by BaseHTTPRequestHandler
        self.send_response(200)
        self._send_cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    do_GET = _dispatch  # noqa: N815
    do_POST = _dispatch  # noqa: N815
    do_PUT = _dispatch  # noqa: N815
    do_PATCH = _dispatch  # noqa: N815
    do_DELETE = _dispatch  # noqa: N815
    do_HEAD = _dispatch  # noqa: N815

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        LOGGER.info("%s - %s", self.address_string(), format % args)
