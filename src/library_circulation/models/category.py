"""Category model - flat book classification."""

from pydantic import BaseModel, ConfigDict, Field


class Category(BaseModel):
    """A named category a book can be filed under."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str = Field(..., min_length=1, max_length=100, examples=["Fiction", "History"])
