from pydantic import BaseModel, Field, field_validator
from typing import Optional


class RoomClassification(BaseModel):
    """
    One DPS-01 classification decision for a room type.

    Produced by the classifier (LLM JSON mode) and treated as authoritative by
    the load assembler; nothing here is re-derived downstream.
    """
    room_label: str = Field(..., min_length=1, description="Room label exactly as submitted, e.g. MASTER BEDROOM")
    room_type: str = Field(..., description="Normalised English room type, e.g. Bedroom")
    customer_category: str = Field(..., description="DPS-01 customer category code, e.g. C1")
    category_description: str = Field("", description="e.g. Normal Residential Dwelling")
    load_density_va_m2: float = Field(..., ge=0, description="Connected load density in VA/m²")
    demand_factor: float = Field(..., ge=0, le=1, description="DPS-01 demand factor, 0–1")
    loads_included: str = Field("", description="e.g. Lighting + sockets + A/C")
    ac_included: Optional[bool] = Field(None, description="Whether the density includes climate control")
    code_reference: str = Field("", description="DPS-01 table / section the figures came from")
    classification_reason: str = Field("", description="Short rationale for the category")

    @field_validator("customer_category")
    @classmethod
    def _normalise_category(cls, v: str) -> str:
        return v.strip().upper()


class ClassificationResponse(BaseModel):
    """Top-level JSON object the classifier prompt asks for."""
    rooms: list = Field(..., description="One record per unique room label")   # validated record by record
