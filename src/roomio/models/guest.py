"""Pydantic models for guest bookings and the verified guest context."""

from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from roomio.utils.time_utils import coerce_timestamp


def _room_to_str(v: Any) -> Any:
    """Room numbers are stored as strings or numbers; compare them as strings."""
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return str(int(v)) if float(v).is_integer() else str(v)
    return v


class GuestBooking(BaseModel):
    """Guest booking record from the `guests` collection."""

    id: Optional[str] = None
    admin_id: Optional[str] = Field(None, alias="adminId")
    admin_email: Optional[str] = Field(None, alias="adminEmail")
    mobile: str = ""
    room_number: Optional[str] = Field(None, alias="roomNumber")
    guest_name: Optional[str] = Field(None, alias="guestName")
    is_active: bool = Field(default=False, alias="isActive")
    is_logged_in: bool = Field(default=False, alias="isLoggedIn")
    last_login: Optional[datetime] = Field(None, alias="lastLogin")
    last_logout: Optional[datetime] = Field(None, alias="lastLogout")
    last_heartbeat: Optional[datetime] = Field(None, alias="lastHeartbeat")
    checkout_at: Optional[datetime] = Field(None, alias="checkoutAt")

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("room_number", mode="before")
    @classmethod
    def parse_room_number(cls, v):
        return _room_to_str(v)

    @field_validator("mobile", mode="before")
    @classmethod
    def parse_mobile(cls, v):
        return str(v) if isinstance(v, int) else v

    @field_validator(
        "last_login", "last_logout", "last_heartbeat", "checkout_at", mode="before"
    )
    @classmethod
    def parse_timestamps(cls, v):
        """Accept store timestamps, ISO strings and epoch milliseconds."""
        return coerce_timestamp(v)

    def is_checked_out(self, now: datetime) -> bool:
        """True once the booking's checkout time has passed."""
        return self.checkout_at is not None and now >= self.checkout_at


class GuestIdentity(BaseModel):
    """The (admin, mobile, room) tuple a guest session is keyed by."""

    admin_id: str
    mobile: str
    room_number: str

    model_config = ConfigDict(frozen=True)

    @field_validator("room_number", mode="before")
    @classmethod
    def parse_room_number(cls, v):
        return _room_to_str(v)

    @property
    def namespace(self) -> str:
        """Local-state namespace: ``admin:mobile:room``."""
        return f"{self.admin_id}:{self.mobile}:{self.room_number}"


class GuestContext(BaseModel):
    """Verified guest context forwarded between the portal screens.

    ``room_number`` keeps the stored type (string or number) so equality
    queries against the store keep matching.
    """

    guest_name: str = Field(default="Guest", alias="guestName")
    room_number: Union[int, str] = Field(alias="roomNumber")
    mobile: str
    admin_email: Optional[str] = Field(None, alias="adminEmail")
    admin_id: str = Field(alias="adminId")
    guest_doc_id: str = Field(alias="guestDocId")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def identity(self) -> GuestIdentity:
        return GuestIdentity(
            admin_id=self.admin_id,
            mobile=self.mobile,
            room_number=self.room_number,
        )

    @property
    def masked_admin(self) -> str:
        return mask_email(self.admin_email)


def mask_email(email: Optional[str]) -> str:
    """Mask an admin email for display: ``jo***@hotel.com``."""
    if not email:
        return "Unknown"
    name, sep, domain = email.partition("@")
    if not sep or not domain:
        return email
    return f"{name[:2]}***@{domain}"
