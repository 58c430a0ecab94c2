"""Shared backend helpers for the Sellhub checkout endpoints.

This module centralises the logic used both by the local Flask development
server (``server.py``) and the Vercel serverless functions located in
``api/``.  Each operation takes the process-wide :class:`Settings` as an
argument, validates its input, runs the endpoint fallback in
:mod:`services.sellhub` and returns the JSON payload for the frontend.
:func:`execute` turns any failure into a ``(status, payload)`` pair so both
surfaces answer identically.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import json
import logging
import math
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests

from config.settings import Settings
from services.sellhub import (
    SellhubClient,
    SellhubError,
    UpstreamNotFound,
    UpstreamProtocolError,
    checkout_candidates,
    invoice_detail_candidates,
    invoice_list_candidates,
    session_candidates,
)

LOGGER = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
QUANTITY_PATTERN = re.compile(r"^\s*([+-]?\d+)")
INVOICE_WINDOW = timedelta(hours=2)
INVOICE_LIST_FIELDS = ("invoices", "data", "items", "results")
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
MAX_CREATED_MS = (
    datetime.max.replace(tzinfo=timezone.utc) - EPOCH - INVOICE_WINDOW
) // timedelta(milliseconds=1)


class ValidationError(SellhubError):
    """Raised when the inbound request is missing or malformed."""

    status = 400

    def __init__(self, title: str, details: Optional[str] = None) -> None:
        self.title = title
        super().__init__("", **({"details": details} if details else {}))


class ConfigurationError(SellhubError):
    """Raised when a required environment variable is missing."""

    title = "Server configuration error"

    def __init__(self, missing: str) -> None:
        super().__init__(f"{missing} is not configured.")
        self.missing = missing

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.title}


def _is_valid_email(value: object) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.fullmatch(value))


def coerce_quantity(value: object) -> int:
    """Return a positive quantity, defaulting to 1 for anything unusable."""

    quantity = 0
    if isinstance(value, bool):
        quantity = 0
    elif isinstance(value, int):
        quantity = value
    elif isinstance(value, float):
        quantity = int(value) if math.isfinite(value) else 0
    elif isinstance(value, str):
        match = QUANTITY_PATTERN.match(value)
        quantity = int(match.group(1)) if match else 0
    return quantity if quantity > 0 else 1


@dataclass
class CheckoutRequest:
    email: str
    variant_id: str
    variant_price: Optional[str]
    variant_name: Optional[str]
    quantity: int
    product_id: Optional[str]

    @classmethod
    def from_payload(
        cls, payload: Mapping[str, Any], require_price: bool = True
    ) -> "CheckoutRequest":
        email = payload.get("email")
        variant_id = payload.get("variantId")
        variant_price = payload.get("variantPrice")

        price_missing = variant_price is None or variant_price == ""
        if not email or not variant_id or (require_price and price_missing):
            details = (
                "Email, variantId, and variantPrice are required"
                if require_price
                else "Email and variantId are required"
            )
            raise ValidationError("Missing required fields", details)

        if not _is_valid_email(email):
            raise ValidationError("Invalid email format")

        variant_name = payload.get("variantName")
        product_id = payload.get("productId")
        return cls(
            email=str(email),
            variant_id=str(variant_id),
            variant_price=None if price_missing else str(variant_price),
            variant_name=str(variant_name) if variant_name else None,
            quantity=coerce_quantity(payload.get("quantity", 1)),
            product_id=str(product_id) if product_id else None,
        )


def build_checkout_payload(
    request: CheckoutRequest, settings: Settings, origin: Optional[str] = None
) -> Dict[str, Any]:
    variant: Dict[str, Any] = {
        "id": request.variant_id,
        "name": request.variant_name or "Default",
    }
    if request.variant_price is not None:
        variant["price"] = request.variant_price

    return {
        "email": request.email,
        "currency": settings.sellhub_currency,
        "returnUrl": settings.resolve_return_url(origin),
        "methodName": "",
        "customFieldValues": [],
        "cart": {
            "items": [
                {
                    "id": request.product_id or settings.sellhub_product_id,
                    "variant": variant,
                    "quantity": request.quantity,
                    "addons": [],
                }
            ],
            "bundles": [],
        },
    }


def _require(settings: Settings, *fields: str) -> None:
    for name in fields:
        if not getattr(settings, name, None):
            LOGGER.error("Missing Sellhub configuration: %s", name.upper())
            raise ConfigurationError(name.upper())


def _first(mapping: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def extract_checkout(body: Any, store_url: str) -> Dict[str, Any]:
    """Pull the checkout URL and session id from a flat or nested body."""

    if not isinstance(body, dict):
        raise UpstreamProtocolError(
            "Sellhub returned an unexpected checkout response.", phase="checkout"
        )
    nested = body.get("session") if isinstance(body.get("session"), dict) else {}

    checkout_url = _first(body, "url", "checkoutUrl") or _first(nested, "url", "checkoutUrl")
    session_id = _first(body, "id", "sessionId") or _first(nested, "id", "sessionId")

    if not checkout_url and session_id:
        checkout_url = f"{store_url}/checkout/{session_id}/"
    if not checkout_url:
        raise UpstreamProtocolError(
            "Sellhub response contained neither a checkout URL nor a session id.",
            phase="checkout",
        )
    return {"success": True, "checkoutUrl": checkout_url, "sessionId": session_id}


def create_checkout(
    settings: Settings,
    payload: Mapping[str, Any],
    origin: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    request = CheckoutRequest.from_payload(
        payload, require_price=settings.sellhub_require_variant_price
    )
    _require(settings, "sellhub_api_key", "sellhub_store_id")

    checkout_payload = build_checkout_payload(request, settings, origin)
    LOGGER.info(
        "Creating Sellhub checkout for variant %s (product %s, quantity %s)",
        request.variant_id,
        checkout_payload["cart"]["items"][0]["id"],
        request.quantity,
    )

    with SellhubClient.from_settings(settings, session=session) as client:
        result = client.first_success(
            checkout_candidates(settings), "POST", checkout_payload, stop_on_error=True
        )
    hit = result.raise_for_failure("checkout", settings.sellhub_store_url)
    return extract_checkout(hit.body, settings.sellhub_store_url)


def unwrap_session(body: Any) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise UpstreamProtocolError(
            "Sellhub returned an unexpected session response.", phase="session"
        )
    session = body.get("session") or body
    status = body.get("status")
    if not status and isinstance(session, dict):
        status = session.get("status")
    return {"success": True, "session": session, "status": status}


def fetch_session(
    settings: Settings,
    session_id: Optional[str],
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    session_id = (session_id or "").strip()
    if not session_id:
        raise ValidationError(
            "Missing required field", "sessionId query parameter is required"
        )
    _require(settings, "sellhub_api_key")

    LOGGER.info("Fetching Sellhub session %s", session_id)
    with SellhubClient.from_settings(settings, session=session) as client:
        result = client.first_success(session_candidates(settings, session_id), "GET")
    hit = result.raise_for_failure("session", settings.sellhub_store_url)
    return unwrap_session(hit.body)


def parse_created_at_ms(value: object) -> float:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(
            "Missing required field", "createdAtMs query parameter is required"
        )
    try:
        created_ms = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        created_ms = math.nan
    if not math.isfinite(created_ms) or not 0 < created_ms <= MAX_CREATED_MS:
        raise ValidationError(
            "Invalid createdAtMs",
            "createdAtMs must be a unix timestamp in milliseconds",
        )
    return created_ms


def _iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


def invoice_window(created_ms: float) -> Tuple[str, str]:
    """Return the ISO-8601 ``(from, to)`` bounds around *created_ms*."""

    created = EPOCH + timedelta(milliseconds=created_ms)
    return _iso(created - INVOICE_WINDOW), _iso(created + INVOICE_WINDOW)


def parse_timestamp(value: object) -> datetime:
    """Parse an upstream creation timestamp; unparseable values sort as epoch."""

    if not isinstance(value, str) or not value.strip():
        return EPOCH
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_invoices(body: Any) -> List[Dict[str, Any]]:
    if isinstance(body, list):
        invoices: Any = body
    elif isinstance(body, dict):
        invoices = _first(body, *INVOICE_LIST_FIELDS) or []
    else:
        invoices = []
    if not isinstance(invoices, list):
        return []
    return [invoice for invoice in invoices if isinstance(invoice, dict)]


def _invoice_email(invoice: Mapping[str, Any]) -> str:
    return str(invoice.get("email") or invoice.get("customerEmail") or "").strip().lower()


def invoice_id(invoice: Mapping[str, Any]) -> Optional[str]:
    value = _first(invoice, "id", "_id", "invoiceId")
    return str(value) if value else None


def select_invoice(
    invoices: List[Dict[str, Any]], email: Optional[str] = None
) -> Optional[Dict[str, Any]]:
    """Pick the newest invoice, preferring those matching *email*.

    When the email filter matches nothing the full list is used instead of
    reporting a miss.
    """

    normalized = (email or "").strip().lower()
    pool = invoices
    if normalized:
        filtered = [invoice for invoice in invoices if _invoice_email(invoice) == normalized]
        if filtered:
            pool = filtered
        else:
            LOGGER.info("No invoice matched %s, falling back to the whole window", normalized)

    ordered = sorted(
        pool,
        key=lambda invoice: parse_timestamp(invoice.get("createdAt") or invoice.get("created_at")),
        reverse=True,
    )
    return ordered[0] if ordered else None


def fetch_invoice(
    settings: Settings,
    created_at_ms: object,
    email: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Dict[str, Any]:
    created_ms = parse_created_at_ms(created_at_ms)
    email = (email or "").strip() or None
    if email is not None and not _is_valid_email(email):
        raise ValidationError("Invalid email format")
    _require(settings, "sellhub_api_key")

    created_from, created_to = invoice_window(created_ms)
    LOGGER.info(
        "Fetching Sellhub invoices between %s and %s (email filter: %s)",
        created_from,
        created_to,
        email or "(none)",
    )

    with SellhubClient.from_settings(settings, session=session) as client:
        listing = client.first_success(
            invoice_list_candidates(settings, created_from, created_to),
            "GET",
            stop_on_error=True,
        )
        hit = listing.raise_for_failure("list", settings.sellhub_store_url)

        invoices = extract_invoices(hit.body)
        if not invoices:
            raise UpstreamNotFound(
                "No invoices found in time window",
                createdAtFrom=created_from,
                createdAtTo=created_to,
            )

        selected = select_invoice(invoices, email)
        selected_id = invoice_id(selected) if selected else None
        if not selected_id:
            raise UpstreamNotFound(
                "Invoice not found",
                note="Invoices were returned but none matched the expected structure.",
                createdAtFrom=created_from,
                createdAtTo=created_to,
            )

        LOGGER.info("Selected invoice %s out of %d", selected_id, len(invoices))
        detail = client.first_success(
            invoice_detail_candidates(settings, selected_id), "GET", stop_on_error=True
        )
    found = detail.raise_for_failure("detail", settings.sellhub_store_url)

    body = found.body
    invoice = (body.get("invoice") or body) if isinstance(body, dict) else body
    return {"success": True, "invoice": invoice}


def execute(
    name: str, operation: Callable[..., Dict[str, Any]], *args: Any, **kwargs: Any
) -> Tuple[int, Dict[str, Any]]:
    """Run *operation* and map any failure onto an HTTP status and payload."""

    try:
        return 200, operation(*args, **kwargs)
    except SellhubError as exc:
        LOGGER.warning("%s failed with HTTP %s: %s", name, exc.status, exc)
        return exc.status, exc.to_payload()
    except Exception as exc:  # pragma: no cover - unexpected failure
        LOGGER.exception("%s crashed", name)
        return 500, {"error": "Internal server error", "message": str(exc)}


def dump_json(data: Mapping[str, Any]) -> bytes:
    return json.dumps(data).encode("utf-8")
