"""Pydantic models for a hotel's menu."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


CATEGORY_LABELS = {
    "breakfast": "🍳 Breakfast",
    "lunch": "🍱 Lunch",
    "dinner": "🍽️ Dinner",
    "all": "All Items",
}


class MenuItem(BaseModel):
    """Menu item from `users/{adminId}/menuItems`."""

    id: str
    name: str = "Unnamed Item"
    price: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    is_available: bool = Field(default=True, alias="isAvailable")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, v):
        """Non-numeric prices are shown as unknown and count as zero in a cart."""
        if isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return float(v)
        return None

    @field_validator("is_available", mode="before")
    @classmethod
    def parse_is_available(cls, v):
        # Only an explicit false hides an item
        return v is not False

    @property
    def unit_price(self) -> float:
        return self.price or 0.0


def category_label(category: str) -> str:
    """Display label for a menu category."""
    return CATEGORY_LABELS.get(category, category)
