"""Request and response bodies of the guest portal API."""

from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from roomio.models.menu import MenuItem


# -------- Access --------


class AccessRequest(BaseModel):
    admin_email: Optional[str] = Field(default=None, description="Admin email from the room QR code")
    mobile: str = Field(description="Guest mobile number, 10 digits")

    @field_validator("mobile")
    @classmethod
    def strip_mobile(cls, v: str) -> str:
        return v.strip()


class GuestOut(BaseModel):
    guest_name: str
    room_number: Union[int, str]
    mobile: str
    admin: str  # masked admin email
    admin_id: str


class AccessResponse(BaseModel):
    session_id: str
    guest: GuestOut


# -------- Services --------


class ServiceRequestBody(BaseModel):
    confirm_charge: bool = False


# -------- Menu / orders --------


class CategoryOut(BaseModel):
    key: str
    label: str


class MenuResponse(BaseModel):
    categories: list[CategoryOut]
    items: list[MenuItem]
    error: Optional[str] = None


class OrderRequest(BaseModel):
    items: dict[str, int] = Field(default_factory=dict, description="Menu item id -> count")


class OrderResponse(BaseModel):
    order_id: str
    message: str


# -------- Misc --------


class StatusResponse(BaseModel):
    status: str
    detail: Optional[str] = None
