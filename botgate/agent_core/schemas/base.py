"""Pydantic base schema utilities for agent core models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all domain schemas.

    - ``populate_by_name=True``: allow initialization by alias or field name.
    - ``extra="forbid"``: unknown fields are rejected, so a typo in a stored
      permission value or an API payload never silently widens a policy.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )


class FrozenSchema(BaseSchema):
    """Immutable variant used for derived values such as resolved permissions."""
    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )
