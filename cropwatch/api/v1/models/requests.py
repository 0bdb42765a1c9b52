"""
API request models using Pydantic.
"""
from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator


class CompareRequest(BaseModel):
    """Period over which a farm's analyses are compared."""
    start_date: datetime = Field(description="Start of the period (inclusive)")
    end_date: datetime = Field(description="End of the period (inclusive)")

    class Config:
        json_schema_extra = {
            "example": {
                "start_date": "2026-02-01T00:00:00Z",
                "end_date": "2026-03-01T23:59:59Z",
            }
        }

    @field_validator("start_date", "end_date")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _check_period(self) -> "CompareRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self
