"""Pydantic models for tracked service requests and food orders.

Stored documents vary in shape by collection and by whoever wrote them.
Each tracked document is parsed into a tagged union discriminated by
``kind``: ``"service"`` for the `serviceRequests` collection and
``"food"`` for a hotel's food orders.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    field_validator,
)

from roomio.models.guest import _room_to_str
from roomio.models.status import RequestStatus, RequestStatusMapper
from roomio.utils.time_utils import coerce_timestamp

RequestKind = Literal["service", "food"]


class ServiceDefinition(BaseModel):
    """A guest-requestable service shown on the services tab."""

    key: str
    label: str  # Stored as the request `type`
    sent_message: str

    model_config = ConfigDict(frozen=True)


SERVICE_CATALOG: dict[str, ServiceDefinition] = {
    "laundry": ServiceDefinition(
        key="laundry",
        label="Laundry Pickup",
        sent_message="✅ Laundry pickup request sent!",
    ),
    "housekeeping": ServiceDefinition(
        key="housekeeping",
        label="Housekeeping",
        sent_message="✅ Housekeeping request sent!",
    ),
}


class OrderLine(BaseModel):
    """One cart line of a food order."""

    name: str = "Unknown"
    price: float = 0.0
    count: int = Field(default=1, ge=1)
    category: str = "unknown"

    @property
    def subtotal(self) -> float:
        return self.price * self.count


class _TrackedBase(BaseModel):
    """Fields shared by every tracked document."""

    id: str
    admin_id: Optional[str] = Field(None, alias="adminId")
    status: RequestStatus = RequestStatus.PENDING
    room_number: Optional[str] = Field(None, alias="roomNumber")
    guest_name: Optional[str] = Field(None, alias="guestName")
    guest_mobile: Optional[str] = Field(None, alias="guestMobile")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")
    accepted_at: Optional[datetime] = Field(None, alias="acceptedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")
    estimated_time: Optional[float] = Field(None, alias="estimatedTime")  # minutes
    source: Optional[str] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v):
        return RequestStatusMapper.parse(v)

    @field_validator("room_number", mode="before")
    @classmethod
    def parse_room_number(cls, v):
        return _room_to_str(v)

    @field_validator(
        "created_at", "updated_at", "accepted_at", "completed_at", mode="before"
    )
    @classmethod
    def parse_timestamps(cls, v):
        """Accept store timestamps, ISO strings and epoch milliseconds."""
        return coerce_timestamp(v)

    @field_validator("estimated_time", mode="before")
    @classmethod
    def parse_estimated_time(cls, v):
        """Estimated minutes may arrive as strings; non-numeric means unknown."""
        if v is None or v == "" or isinstance(v, bool):
            return None
        try:
            return float(v)
        except (TypeError, ValueError):
            return None

    @property
    def has_progress(self) -> bool:
        """True when a progress bar can be drawn for this request."""
        return (
            self.status == RequestStatus.IN_PROGRESS
            and self.accepted_at is not None
            and self.estimated_time is not None
            and self.estimated_time > 0
        )


class ServiceRequest(_TrackedBase):
    """Laundry / housekeeping request from `serviceRequests`."""

    kind: Literal["service"] = "service"
    type: str = "Service"
    charges: float = 0.0

    @property
    def display_name(self) -> str:
        return self.type or "Service"


class FoodOrder(_TrackedBase):
    """Food order placed from the menu."""

    kind: Literal["food"] = "food"
    item: Optional[str] = None  # "2x Tea, 1x Toast"
    order_details: list[OrderLine] = Field(
        default_factory=list,
        validation_alias=AliasChoices("orderDetails", "details", "order_details"),
    )
    total_amount: float = Field(
        default=0.0,
        validation_alias=AliasChoices("totalAmount", "totalPrice", "total_amount"),
    )
    notes: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.item or "Food Order"


TrackedRequest = Annotated[Union[ServiceRequest, FoodOrder], Field(discriminator="kind")]

_tracked_adapter: TypeAdapter = TypeAdapter(TrackedRequest)


def parse_tracked(kind: RequestKind, doc_id: str, data: dict[str, Any]) -> Union[ServiceRequest, FoodOrder]:
    """Parse a stored document into its tagged model.

    Args:
        kind: Which collection the document was read from
        doc_id: Store document id
        data: Raw document fields

    Returns:
        ServiceRequest or FoodOrder
    """
    payload = {**data, "id": doc_id, "kind": kind}
    return _tracked_adapter.validate_python(payload)


def summarize_lines(lines: list[OrderLine]) -> str:
    """Human summary of an order: ``"2x Tea, 1x Toast"``."""
    return ", ".join(f"{line.count}x {line.name}" for line in lines)
