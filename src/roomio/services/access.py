"""Guest verification from the room QR code."""

import re
from typing import Optional

from structlog import get_logger

from roomio.clients.document_store import SERVER_TIMESTAMP, DocumentStore
from roomio.config import settings
from roomio.models.guest import GuestBooking, GuestContext

logger = get_logger(__name__)

MOBILE_PATTERN = re.compile(r"^[0-9]{10}$")


class AccessError(Exception):
    """Base exception for guest access failures."""

    pass


class InvalidMobileError(AccessError):
    """Raised when the mobile number is not exactly 10 digits."""

    pass


class MissingAdminError(AccessError):
    """Raised when the QR code carried no admin email."""

    pass


class NoActiveBookingError(AccessError):
    """Raised when no active booking matches the mobile number."""

    pass


class AlreadyLoggedInError(AccessError):
    """Raised when the booking is already logged in on another device."""

    pass


class GuestAccessService:
    """Verifies a guest and claims the single login slot of their booking."""

    def __init__(self, store: DocumentStore):
        self.store = store
        self.guests_collection = settings.store.guests_collection

    async def verify(self, admin_email: Optional[str], mobile: str) -> GuestContext:
        """Verify a guest by mobile number and mark them logged in.

        The logged-in check and the login write are two separate
        operations; two devices verifying at the same moment can both
        succeed.

        Args:
            admin_email: Hotel admin email from the QR code
            mobile: Mobile number typed by the guest

        Returns:
            GuestContext for the dashboard

        Raises:
            InvalidMobileError: If the mobile number is malformed
            MissingAdminError: If the admin email is missing
            NoActiveBookingError: If there is no active booking
            AlreadyLoggedInError: If the booking is logged in elsewhere
            DocumentStoreError: If the store cannot be read or written
        """
        mobile = (mobile or "").strip()
        if not MOBILE_PATTERN.match(mobile):
            raise InvalidMobileError("Enter a valid 10-digit mobile number")
        if not admin_email:
            raise MissingAdminError("Invalid QR: admin missing")

        documents = await self.store.query(
            self.guests_collection,
            {"adminEmail": admin_email, "mobile": mobile, "isActive": True},
        )
        if not documents:
            logger.info("No active booking found", mobile_suffix=mobile[-4:])
            raise NoActiveBookingError("No active booking found.")

        document = documents[0]
        booking = GuestBooking.model_validate({**document.data, "id": document.id})
        if booking.is_logged_in:
            logger.warning("Login refused, already logged in", guest_doc_id=document.id)
            raise AlreadyLoggedInError(
                "This mobile number is already logged in on another device."
            )

        await self.store.update(
            self.guests_collection,
            document.id,
            {
                "isLoggedIn": True,
                "lastLogin": SERVER_TIMESTAMP,
                "lastHeartbeat": SERVER_TIMESTAMP,
                "logoutReason": None,
            },
        )

        context = GuestContext(
            guest_name=booking.guest_name or "Guest",
            room_number=document.data.get("roomNumber", booking.room_number or ""),
            mobile=mobile,
            admin_email=booking.admin_email or admin_email,
            admin_id=booking.admin_id or "",
            guest_doc_id=document.id,
        )
        logger.info(
            "Guest verified",
            guest_doc_id=document.id,
            room_number=str(context.room_number),
        )
        return context
