"""Sellhub REST client built around ordered endpoint fallback.

The Sellhub API has moved between hosts and path layouts, and the platform
answers unknown routes with HTML pages (sometimes with a 200 status).  Each
operation therefore carries a short list of candidate endpoints, tried in
order, and a response only counts as a hit when it is JSON *and* 2xx.
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union
from urllib.parse import quote, urlencode

import requests

from config.settings import Settings

LOGGER = logging.getLogger(__name__)

STORE_HOST = "https://store.sellhub.cx"
DASH_HOST = "https://dash.sellhub.cx"
PREVIEW_LENGTH = 200


class SellhubError(RuntimeError):
    """Base class for errors that resolve to a JSON error response."""

    status = 500
    title = "Internal server error"

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.title)
        self.message = message
        self.details = details

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.title}
        if self.message:
            payload["message"] = self.message
        payload.update(self.details)
        return payload


class UpstreamNotFound(SellhubError):
    """Raised when the upstream answered but holds no matching record."""

    status = 404

    def __init__(self, title: str, **details: Any) -> None:
        self.title = title
        super().__init__("", **details)


class UpstreamProtocolError(SellhubError):
    """Raised when no candidate produced a usable JSON response."""

    status = 502
    title = "Sellhub API endpoint not found"


class UpstreamBusinessError(SellhubError):
    """Raised when a reachable endpoint rejected the request with JSON."""

    title = "Sellhub API error"

    def __init__(self, status: int, message: str, **details: Any) -> None:
        super().__init__(message, status=status, **details)
        self.status = status


class UpstreamNetworkError(SellhubError):
    """Raised when every candidate failed at the transport level."""

    title = "Network error"


class AuthScheme(str, enum.Enum):
    BEARER = "bearer"
    RAW = "raw"


@dataclass(frozen=True)
class EndpointCandidate:
    """One guessed endpoint together with the headers it expects."""

    url: str
    auth: AuthScheme = AuthScheme.RAW
    extra_headers: Mapping[str, str] = field(default_factory=dict)

    def build_headers(self, api_key: str, store_id: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.auth is AuthScheme.BEARER:
            headers["Authorization"] = f"Bearer {api_key}"
            if store_id:
                headers["X-Store-ID"] = store_id
        else:
            headers["Authorization"] = api_key
        headers.update(self.extra_headers)
        return headers


@dataclass
class Success:
    url: str
    status: int
    body: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoint": self.url, "status": self.status}


@dataclass
class NonJsonResponse:
    url: str
    status: int
    content_type: str
    preview: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoint": self.url,
            "status": self.status,
            "contentType": self.content_type,
            "preview": self.preview,
            "error": "Non-JSON response",
        }


@dataclass
class JsonError:
    url: str
    status: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoint": self.url, "status": self.status, "error": self.message}


@dataclass
class NetworkError:
    url: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"endpoint": self.url, "error": self.message}


Attempt = Union[Success, NonJsonResponse, JsonError, NetworkError]


@dataclass
class FallbackResult:
    attempts: List[Attempt] = field(default_factory=list)
    success: Optional[Success] = None
    stopped: bool = False

    @property
    def tried_urls(self) -> List[str]:
        return [attempt.url for attempt in self.attempts]

    @property
    def last_failure(self) -> Optional[Attempt]:
        for attempt in reversed(self.attempts):
            if not isinstance(attempt, Success):
                return attempt
        return None

    def raise_for_failure(self, phase: str, store_url: str = "") -> Success:
        """Return the successful attempt or raise the matching upstream error."""

        if self.success is not None:
            return self.success

        last = self.last_failure
        if self.stopped and isinstance(last, JsonError):
            raise UpstreamBusinessError(last.status, last.message, endpoint=last.url)

        if self.attempts and all(isinstance(a, NetworkError) for a in self.attempts):
            raise UpstreamNetworkError(
                last.message if last is not None else "",
                phase=phase,
                triedEndpoints=self.tried_urls,
            )

        raise UpstreamProtocolError(
            "None of the attempted endpoints worked. Please verify your Sellhub configuration.",
            phase=phase,
            triedEndpoints=self.tried_urls,
            lastError=last.to_dict() if last is not None else None,
            storeUrl=store_url,
            suggestion=(
                "Check the Sellhub dashboard for the correct API endpoint "
                "and pin it once confirmed."
            ),
        )


def _error_message(body: Any, default: str) -> str:
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return default


class SellhubClient:
    """Issues requests against candidate endpoints, first JSON success wins."""

    def __init__(
        self,
        api_key: str,
        store_id: Optional[str] = None,
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.api_key = api_key
        self.store_id = store_id
        self.timeout = timeout
        self._owns_session = session is None
        self.session = session or requests.Session()

    @classmethod
    def from_settings(
        cls, settings: Settings, session: Optional[requests.Session] = None
    ) -> "SellhubClient":
        return cls(
            api_key=settings.sellhub_api_key or "",
            store_id=settings.sellhub_store_id,
            timeout=settings.sellhub_request_timeout,
            session=session,
        )

    def close(self) -> None:
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "SellhubClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def attempt(
        self,
        candidate: EndpointCandidate,
        method: str,
        body: Optional[Mapping[str, Any]] = None,
    ) -> Attempt:
        headers = candidate.build_headers(self.api_key, self.store_id)
        if body is not None:
            headers["Content-Type"] = "application/json"

        try:
            response = self.session.request(
                method,
                candidate.url,
                headers=headers,
                data=json.dumps(body) if body is not None else None,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            LOGGER.warning("%s %s failed: %s", method, candidate.url, exc)
            return NetworkError(candidate.url, str(exc))

        status = response.status_code
        content_type = response.headers.get("Content-Type", "") or ""
        raw = response.text or ""
        LOGGER.info("%s %s -> %s (%s)", method, candidate.url, status, content_type or "no content type")

        if "application/json" not in content_type.lower():
            return NonJsonResponse(candidate.url, status, content_type, raw[:PREVIEW_LENGTH])

        try:
            payload = json.loads(raw)
        except ValueError:
            return NonJsonResponse(candidate.url, status, content_type, raw[:PREVIEW_LENGTH])

        if not 200 <= status < 300:
            return JsonError(
                candidate.url,
                status,
                _error_message(payload, f"Sellhub responded with HTTP {status}"),
            )

        return Success(candidate.url, status, payload)

    def first_success(
        self,
        candidates: Sequence[EndpointCandidate],
        method: str,
        body: Optional[Mapping[str, Any]] = None,
        stop_on_error: bool = False,
    ) -> FallbackResult:
        """Try *candidates* in order and stop on the first JSON 2xx response.

        With ``stop_on_error`` a JSON error other than 404 ends the loop: a
        reachable endpoint rejecting the request is most likely the right
        endpoint failing for a business reason.
        """

        if not candidates:
            raise ValueError("At least one endpoint candidate is required.")

        result = FallbackResult()
        for candidate in candidates:
            attempt = self.attempt(candidate, method, body)
            result.attempts.append(attempt)

            if isinstance(attempt, Success):
                result.success = attempt
                LOGGER.info("Sellhub endpoint matched: %s", attempt.url)
                break

            if isinstance(attempt, JsonError) and stop_on_error and attempt.status != 404:
                result.stopped = True
                LOGGER.warning(
                    "Sellhub rejected %s %s with %s: %s",
                    method,
                    attempt.url,
                    attempt.status,
                    attempt.message,
                )
                break
        else:
            LOGGER.error("All %d Sellhub endpoints failed", len(candidates))

        return result


def checkout_candidates(settings: Settings) -> List[EndpointCandidate]:
    store_url = settings.sellhub_store_url
    candidates = [
        EndpointCandidate(f"{store_url}/api/checkout"),
        EndpointCandidate(f"{STORE_HOST}/api/checkout"),
        EndpointCandidate(f"{store_url}/api/session/create-checkout-session", AuthScheme.BEARER),
        EndpointCandidate(
            f"{DASH_HOST}/api/sellhub/session/create-checkout-session", AuthScheme.BEARER
        ),
    ]
    if settings.sellhub_store_id:
        store_id = quote(settings.sellhub_store_id, safe="")
        candidates.append(
            EndpointCandidate(
                f"{DASH_HOST}/api/sellhub/{store_id}/session/create-checkout-session",
                AuthScheme.BEARER,
            )
        )
    return candidates


def session_candidates(settings: Settings, session_id: str) -> List[EndpointCandidate]:
    store_url = settings.sellhub_store_url
    encoded = quote(session_id, safe="")
    return [
        EndpointCandidate(f"{store_url}/api/checkout/{encoded}"),
        EndpointCandidate(f"{store_url}/api/session/{encoded}"),
        EndpointCandidate(f"{STORE_HOST}/api/checkout/{encoded}"),
        EndpointCandidate(f"{STORE_HOST}/api/session/{encoded}"),
        EndpointCandidate(f"{DASH_HOST}/api/sellhub/session/{encoded}", AuthScheme.BEARER),
    ]


def _slug_hint(settings: Settings) -> Dict[str, str]:
    slug = settings.store_slug
    return {"X-Store-Slug": slug} if slug else {}


def invoice_list_candidates(
    settings: Settings, created_from: str, created_to: str
) -> List[EndpointCandidate]:
    store_url = settings.sellhub_store_url
    window = {"createdAtFrom": created_from, "createdAtTo": created_to}
    global_window = dict(window)
    if settings.store_slug:
        global_window["store"] = settings.store_slug
    return [
        EndpointCandidate(f"{store_url}/api/invoices?{urlencode(window)}"),
        EndpointCandidate(
            f"{STORE_HOST}/api/invoices?{urlencode(global_window)}",
            extra_headers=_slug_hint(settings),
        ),
        EndpointCandidate(
            f"{DASH_HOST}/api/sellhub/invoices?{urlencode(window)}", AuthScheme.BEARER
        ),
    ]


def invoice_detail_candidates(settings: Settings, invoice_id: str) -> List[EndpointCandidate]:
    store_url = settings.sellhub_store_url
    encoded = quote(invoice_id, safe="")
    store_query = f"?{urlencode({'store': settings.store_slug})}" if settings.store_slug else ""
    return [
        EndpointCandidate(f"{store_url}/api/invoices/{encoded}"),
        EndpointCandidate(
            f"{STORE_HOST}/api/invoices/{encoded}{store_query}",
            extra_headers=_slug_hint(settings),
        ),
        EndpointCandidate(f"{DASH_HOST}/api/sellhub/invoices/{encoded}", AuthScheme.BEARER),
    ]
