"""Common schemas used across the application."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    gateway_adapter: str
    timestamp: datetime
