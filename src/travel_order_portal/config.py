"""Portal client configuration loaded from YAML and the environment."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .attachments import (
    ORDER_ATTACHMENT_EXTENSIONS,
    SIGNATURE_EXTENSIONS,
    AttachmentPolicy,
)
from .listing import DEFAULT_PAGE_SIZE, PAGE_SIZE_OPTIONS, ListQuery

_ENV_OVERRIDES = {
    "PORTAL_API_BASE_URL": "api_base_url",
    "PORTAL_LOG_LEVEL": "log_level",
}


def _default_config_path() -> Path | None:
    """Return the default portal configuration path if present."""

    for parent in Path(__file__).resolve().parents:
        candidate = parent / "config" / "portal.yaml"
        if candidate.exists():
            return candidate
    return None


class PortalConfig(BaseModel):
    """Settings shared by the API client, list screens and upload checks."""

    api_base_url: str = Field(
        default="http://localhost:8000/api", description="Root URL of the portal API"
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP timeout")
    page_size_options: list[int] = Field(
        default_factory=lambda: list(PAGE_SIZE_OPTIONS),
        description="Page sizes offered on list screens",
    )
    default_page_size: int = Field(default=DEFAULT_PAGE_SIZE, ge=1)
    max_attachment_mb: int = Field(default=20, ge=1, description="Order attachment limit")
    max_signature_mb: int = Field(default=2, ge=1, description="Signature image limit")
    log_level: str = Field(default="INFO", description="Logging level name")

    @field_validator("api_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()

    @model_validator(mode="after")
    def _default_size_offered(self) -> PortalConfig:
        if self.default_page_size not in self.page_size_options:
            raise ValueError("default_page_size must be one of page_size_options")
        return self

    @classmethod
    def from_yaml(cls, content: str) -> PortalConfig:
        data = yaml.safe_load(content) or {}
        if not isinstance(data, dict):
            raise ValueError("Portal configuration must be a mapping")
        return cls.model_validate(data.get("portal", data))

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> PortalConfig:
        target_path = Path(path) if path is not None else _default_config_path()
        if target_path is None:
            raise FileNotFoundError("No portal.yaml file found")
        return cls.from_yaml(target_path.read_text(encoding="utf-8"))

    @classmethod
    def from_environment(cls, env_var: str = "PORTAL_CONFIG") -> PortalConfig:
        content = os.getenv(env_var)
        if not content:
            raise ValueError(f"Environment variable '{env_var}' is not set or empty")
        return cls.from_yaml(content)

    @classmethod
    def load(cls) -> PortalConfig:
        """Resolve configuration: ``PORTAL_CONFIG``, then portal.yaml, then defaults.

        Single-value environment overrides are applied last.
        """

        if os.getenv("PORTAL_CONFIG"):
            config = cls.from_environment()
        elif (path := _default_config_path()) is not None:
            config = cls.from_file(path)
        else:
            config = cls()
        return config.with_env_overrides()

    def with_env_overrides(self) -> PortalConfig:
        updates = {
            field: os.environ[name]
            for name, field in _ENV_OVERRIDES.items()
            if os.environ.get(name)
        }
        if not updates:
            return self
        return self.model_validate({**self.model_dump(), **updates})

    def list_query(self, **filters: Any) -> ListQuery:
        """Start a list screen query at the configured page size."""

        return ListQuery(page_size=self.default_page_size, **filters)

    @property
    def max_attachment_bytes(self) -> int:
        return self.max_attachment_mb * 1024 * 1024

    @property
    def max_signature_bytes(self) -> int:
        return self.max_signature_mb * 1024 * 1024

    def order_attachment_policy(self) -> AttachmentPolicy:
        """Client-side fast-fail limits for travel order attachments."""

        return AttachmentPolicy(
            label="travel order attachment",
            max_bytes=self.max_attachment_bytes,
            allowed_extensions=ORDER_ATTACHMENT_EXTENSIONS,
        )

    def signature_policy(self) -> AttachmentPolicy:
        return AttachmentPolicy(
            label="director signature",
            max_bytes=self.max_signature_bytes,
            allowed_extensions=SIGNATURE_EXTENSIONS,
        )
