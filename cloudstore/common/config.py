from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

ENV_FILE = Path(".env")

MIB = 1024 * 1024
# Smallest chunk any supported provider accepts for a non-final part.
MIN_CHUNK_SIZE_BYTES = 5 * MIB
DEFAULT_CHUNK_SIZE_BYTES = MIN_CHUNK_SIZE_BYTES
DEFAULT_UPLOAD_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.5
DEFAULT_LIST_PAGE_SIZE = 500


def _load_env_file() -> None:
    if not ENV_FILE.exists():
        return
    for raw_line in ENV_FILE.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _as_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in {"1", "true", "t", "yes", "y", "on"}


def _as_optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True, slots=True)
class TransferConfig:
    """Transfer tuning injected into a storage service at construction."""

    chunk_size: int = DEFAULT_CHUNK_SIZE_BYTES
    retries: int = DEFAULT_UPLOAD_RETRIES
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    list_page_size: int = DEFAULT_LIST_PAGE_SIZE

    def __post_init__(self) -> None:
        if self.chunk_size < MIN_CHUNK_SIZE_BYTES:
            raise ValueError(
                f"chunk_size must be at least {MIN_CHUNK_SIZE_BYTES} bytes"
            )
        if self.retries < 0:
            raise ValueError("retries must not be negative")
        if self.retry_base_delay < 0:
            raise ValueError("retry_base_delay must not be negative")
        if self.list_page_size <= 0:
            raise ValueError("list_page_size must be positive")

    @property
    def max_attempts(self) -> int:
        return self.retries + 1

    def retry_delay(self, retry: int) -> float:
        """Delay before retry number ``retry`` (1-based); grows linearly."""
        return (retry + 1) * self.retry_base_delay

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TransferConfig":
        return cls(
            chunk_size=settings.CHUNK_SIZE_BYTES,
            retries=settings.UPLOAD_RETRIES,
            retry_base_delay=settings.RETRY_BASE_DELAY_SECONDS,
            list_page_size=settings.LIST_PAGE_SIZE,
        )


@dataclass
class Settings:
    STORAGE_PROVIDER: str = "memory"
    S3_ENDPOINT_URL: str | None = None
    S3_REGION: str | None = None
    S3_ACCESS_KEY_ID: str | None = None
    S3_SECRET_ACCESS_KEY: str | None = None
    S3_USE_SSL: bool = True
    S3_ADDRESSING_STYLE: str = "path"
    CHUNK_SIZE_BYTES: int = DEFAULT_CHUNK_SIZE_BYTES
    UPLOAD_RETRIES: int = DEFAULT_UPLOAD_RETRIES
    RETRY_BASE_DELAY_SECONDS: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    LIST_PAGE_SIZE: int = DEFAULT_LIST_PAGE_SIZE
    CHUNK_URL_EXPIRES_SECONDS: int = 900
    HTTP_TIMEOUT_SECONDS: float = 60.0
    LOG_LEVEL: str = "INFO"

    def __post_init__(self) -> None:
        style = self.S3_ADDRESSING_STYLE.strip().lower()
        if style not in {"path", "virtual", "auto"}:
            raise ValueError(
                "S3_ADDRESSING_STYLE must be one of: path, virtual, auto."
            )
        if self.CHUNK_URL_EXPIRES_SECONDS <= 0:
            raise ValueError("CHUNK_URL_EXPIRES_SECONDS must be positive.")

    @classmethod
    def from_environment(cls) -> "Settings":
        _load_env_file()
        return cls(
            STORAGE_PROVIDER=os.environ.get("STORAGE_PROVIDER", cls.STORAGE_PROVIDER)
            .strip()
            .lower(),
            S3_ENDPOINT_URL=_as_optional(os.environ.get("S3_ENDPOINT_URL")),
            S3_REGION=_as_optional(os.environ.get("S3_REGION")),
            S3_ACCESS_KEY_ID=_as_optional(os.environ.get("S3_ACCESS_KEY_ID")),
            S3_SECRET_ACCESS_KEY=_as_optional(os.environ.get("S3_SECRET_ACCESS_KEY")),
            S3_USE_SSL=_as_bool(os.environ.get("S3_USE_SSL"), cls.S3_USE_SSL),
            S3_ADDRESSING_STYLE=os.environ.get(
                "S3_ADDRESSING_STYLE", cls.S3_ADDRESSING_STYLE
            ),
            CHUNK_SIZE_BYTES=int(
                os.environ.get("CHUNK_SIZE_BYTES", cls.CHUNK_SIZE_BYTES)
            ),
            UPLOAD_RETRIES=int(os.environ.get("UPLOAD_RETRIES", cls.UPLOAD_RETRIES)),
            RETRY_BASE_DELAY_SECONDS=float(
                os.environ.get(
                    "RETRY_BASE_DELAY_SECONDS", cls.RETRY_BASE_DELAY_SECONDS
                )
            ),
            LIST_PAGE_SIZE=int(os.environ.get("LIST_PAGE_SIZE", cls.LIST_PAGE_SIZE)),
            CHUNK_URL_EXPIRES_SECONDS=int(
                os.environ.get(
                    "CHUNK_URL_EXPIRES_SECONDS", cls.CHUNK_URL_EXPIRES_SECONDS
                )
            ),
            HTTP_TIMEOUT_SECONDS=float(
                os.environ.get("HTTP_TIMEOUT_SECONDS", cls.HTTP_TIMEOUT_SECONDS)
            ),
            LOG_LEVEL=os.environ.get("LOG_LEVEL", cls.LOG_LEVEL).strip().upper(),
        )

    def transfer_config(self) -> TransferConfig:
        return TransferConfig.from_settings(self)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_environment()
