"""Shared Pydantic schemas for Incident Hub."""

import math

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for wire schemas: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "incident-hub"


class SuccessResponse(BaseModel):
    success: bool = True


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1)

    @classmethod
    def clamp(cls, page: int | None, limit: int | None, default: int, maximum: int) -> "Pagination":
        """Out-of-range values are pulled back into range rather than rejected."""
        page = max(page or 1, 1)
        limit = min(max(limit or default, 1), maximum)
        return cls(page=page, limit=limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def pages(self, total: int) -> int:
        return math.ceil(total / self.limit)
