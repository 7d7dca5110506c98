"""
Base schemas shared by request and response models.
"""

from pydantic import BaseModel, ConfigDict


class StandardizedModel(BaseModel):  # type: ignore[misc]
    """Response base: enums serialize as values, fields populate by name or alias."""

    model_config = ConfigDict(use_enum_values=True, populate_by_name=True, from_attributes=True)


class StrictRequestModel(BaseModel):  # type: ignore[misc]
    """Request base: unknown fields are rejected instead of silently dropped."""

    model_config = ConfigDict(
        extra="forbid",
        validate_default=True,
        populate_by_name=True,
    )
