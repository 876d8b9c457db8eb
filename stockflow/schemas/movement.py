from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class MovementCreateIn(BaseModel):
    product_id: int
    from_location_id: int | None = None
    to_location_id: int | None = None
    quantity: int = Field(gt=0)
    notes: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def validate_locations(self) -> "MovementCreateIn":
        if self.from_location_id is None and self.to_location_id is None:
            raise ValueError("from_location_id or to_location_id is required")
        if self.from_location_id is not None and self.from_location_id == self.to_location_id:
            raise ValueError("from_location_id and to_location_id must differ")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": 1,
                "from_location_id": 1,
                "to_location_id": 2,
                "quantity": 4,
                "notes": "Pindah ke rak depan",
            }
        }
    )


class MovementOut(BaseModel):
    id: int
    product_id: int
    product_name: str | None = None
    from_location_id: int | None = None
    from_location_name: str | None = None
    to_location_id: int | None = None
    to_location_name: str | None = None
    quantity: int
    type: str
    reference_id: str | None = None
    notes: str | None = None
    moved_by: str
    created_at: datetime


class MovementListOut(BaseModel):
    items: list[MovementOut]
