"""In-memory stand-ins for the Sellhub API used across the test-suite."""

from __future__ import annotations

import http.client
import io
import json
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import requests

from config.settings import Settings

STORE_URL = "https://demo.sellhub.cx"


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "sellhub_api_key": "test-key",
        "sellhub_store_id": "store-123",
        "sellhub_store_url": STORE_URL,
        "return_url": None,
        "site_origin": "https://shop.example",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_response(
    status: int = 200,
    body: Any = None,
    content_type: Optional[str] = "application/json",
    text: Optional[str] = None,
) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    if content_type:
        response.headers["Content-Type"] = content_type
    raw = text if text is not None else json.dumps(body)
    response._content = raw.encode("utf-8")
    response.encoding = "utf-8"
    return response


def html_page(status: int = 404) -> requests.Response:
    return make_response(
        status,
        content_type="text/html; charset=utf-8",
        text="<!DOCTYPE html><html><body>Page not found</body></html>",
    )


Scripted = Union[requests.Response, Exception]


class FakeSession:
    """Answers by exact URL; unknown URLs get the platform's HTML 404 page."""

    def __init__(self, responses: Optional[Mapping[str, Scripted]] = None) -> None:
        self.responses = dict(responses or {})
        self.calls: List[Dict[str, Any]] = []
        self.closed = False

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        self.calls.append({"method": method, "url": url, **kwargs})
        scripted = self.responses.get(url)
        if scripted is None:
            return html_page()
        if isinstance(scripted, Exception):
            raise scripted
        return scripted

    def close(self) -> None:
        self.closed = True

    @property
    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


def invoke_handler(
    handler_cls: type,
    method: str,
    path: str,
    body: Any = None,
    headers: Optional[Mapping[str, str]] = None,
) -> Tuple[int, Dict[str, str], bytes]:
    """Drive a ``BaseHTTPRequestHandler`` subclass without opening a socket."""

    raw = json.dumps(body).encode("utf-8") if body is not None else b""
    message = http.client.HTTPMessage()
    message["Content-Length"] = str(len(raw))
    message["Content-Type"] = "application/json"
    for key, value in (headers or {}).items():
        message[key] = value

    instance = handler_cls.__new__(handler_cls)
    instance.headers = message
    instance.rfile = io.BytesIO(raw)
    instance.wfile = io.BytesIO()
    instance.command = method
    instance.path = path
    instance.request_version = "HTTP/1.1"
    instance.requestline = f"{method} {path} HTTP/1.1"
    instance.client_address = ("127.0.0.1", 0)
    getattr(instance, f"do_{method}")()

    head, _, payload = instance.wfile.getvalue().partition(b"\r\n\r\n")
    lines = head.decode("iso-8859-1").split("\r\n")
    status = int(lines[0].split(" ")[1])
    response_headers = {}
    for line in lines[1:]:
        key, _, value = line.partition(":")
        response_headers[key.strip()] = value.strip()
    return status, response_headers, payload
