"""
Pydantic schemas for the /collectors endpoints.

A PUT replaces an engine's whole chain. Provider names must exist in the
provider registry, otherwise the request is rejected with 422.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from config.settings import settings
from providers.registry import available_providers


class ProviderSpecSchema(BaseModel):
    name: str
    priority: int = Field(default=1, ge=1, le=100)
    enabled: bool = True
    timeout_seconds: float = Field(default=settings.DEFAULT_PROVIDER_TIMEOUT, gt=0, le=900)
    fallback_on_failure: bool = True
    options: dict = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def provider_must_exist(cls, value: str) -> str:
        if value not in available_providers():
            raise ValueError(f"Unknown provider '{value}'")
        return value


class CollectorConfigUpdate(BaseModel):
    """Request body for PUT /collectors/{engine}."""

    providers: list[ProviderSpecSchema] = Field(..., min_length=1)
    max_concurrency: int = Field(default=settings.DEFAULT_ENGINE_CONCURRENCY, ge=1, le=50)
    enabled: bool = True
    updated_by: Optional[str] = None


class CollectorConfigResponse(BaseModel):
    engine: str
    providers: list[dict]
    max_concurrency: int
    enabled: bool
    version: int
    source: str  # "database" or "default"
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None


class CollectorHealthResponse(BaseModel):
    engine: str
    providers: dict[str, dict]
