"""
Shared schema building blocks.

Persisted field names are exposed in camelCase (``trackingNumber``,
``currentStopIndex``) because downstream consumers match on them literally;
requests accept either spelling.
"""

from typing import List, Literal
from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base schema with camelCase aliases."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class GeoPoint(ApiModel):
    """GeoJSON point, coordinates as [longitude, latitude]."""
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(..., min_length=2, max_length=2)

    @field_validator("coordinates")
    @classmethod
    def check_ranges(cls, value: List[float]) -> List[float]:
        longitude, latitude = value
        if not -180 <= longitude <= 180 or not -90 <= latitude <= 90:
            raise ValueError("Coordinates must be valid [longitude, latitude] values")
        return value

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]
