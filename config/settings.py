"""Global configuration helpers for the Sellhub checkout functions."""

from __future__ import annotations

from functools import lru_cache
import logging
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOGGER = logging.getLogger(__name__)


DEFAULT_PRODUCT_ID = "ac3ab96d-c3d5-4ebd-b9a2-d380def5adbb"
DEFAULT_STORE_URL = "https://visiondevelopment.sellhub.cx"


class Settings(BaseSettings):
    """Container for runtime configuration values.

    Every field maps to the upper-cased environment variable of the same
    name (``sellhub_api_key`` -> ``SELLHUB_API_KEY``).  Only the API key and,
    for checkout creation, the store id are mandatory; the handlers check
    for them at request time so that a missing secret turns into a clean
    500 response rather than an import failure.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    sellhub_api_key: Optional[str] = None
    sellhub_store_id: Optional[str] = None
    sellhub_product_id: str = Field(default=DEFAULT_PRODUCT_ID)
    sellhub_store_url: str = Field(default=DEFAULT_STORE_URL)
    sellhub_store_slug: Optional[str] = None
    sellhub_currency: str = Field(default="USD")
    sellhub_require_variant_price: bool = Field(default=True)
    sellhub_request_timeout: float = Field(default=15.0)

    return_url: Optional[str] = None
    site_origin: str = Field(default="https://shxdowcheats.net")

    log_level: str = Field(default="INFO")

    @field_validator("sellhub_store_url", "site_origin", mode="before")
    @classmethod
    def _strip_trailing_slash(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().rstrip("/")
        return value

    @field_validator(
        "sellhub_api_key",
        "sellhub_store_id",
        "sellhub_store_slug",
        "return_url",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def store_slug(self) -> str:
        """Slug used as a store hint on the platform-global hosts."""

        if self.sellhub_store_slug:
            return self.sellhub_store_slug
        host = urlparse(self.sellhub_store_url).hostname or ""
        return host.split(".")[0] if host else ""

    def resolve_return_url(self, origin: Optional[str] = None) -> str:
        if self.return_url:
            return self.return_url
        base = (origin or "").strip().rstrip("/") or self.site_origin
        return f"{base}/purchase-success"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings so each process builds them exactly once."""

    try:
        return Settings()
    except Exception:
        LOGGER.exception("Invalid configuration, falling back to defaults")
        return Settings.model_construct()
