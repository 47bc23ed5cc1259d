"""Common Pydantic schemas used across the API."""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class HealthResponse(BaseSchema):
    """Health check response schema."""

    status: str
    version: str
    environment: str
    checks: dict[str, str]


class WebhookAck(BaseSchema):
    """Body returned to Shopify for every handled webhook delivery."""

    status: str = "ok"
    topic: str | None = None
