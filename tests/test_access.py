"""Tests for guest verification."""

from unittest.mock import AsyncMock

import pytest

from roomio.clients import DocumentStoreError
from roomio.services.access import (
    AlreadyLoggedInError,
    GuestAccessService,
    InvalidMobileError,
    MissingAdminError,
    NoActiveBookingError,
)

from conftest import ADMIN_EMAIL, ADMIN_ID, GUEST_DOC_ID, MOBILE, ROOM


@pytest.fixture
def checked_in_store(store, guest_record):
    store.set_document("guests", GUEST_DOC_ID, {**guest_record, "isLoggedIn": False})
    return store


class TestGuestAccess:
    """Tests for mobile verification against active bookings."""

    @pytest.mark.asyncio
    async def test_verify_logs_guest_in(self, checked_in_store, clock):
        context = await GuestAccessService(checked_in_store).verify(ADMIN_EMAIL, MOBILE)

        assert context.guest_doc_id == GUEST_DOC_ID
        assert context.admin_id == ADMIN_ID
        assert context.room_number == ROOM
        assert context.guest_name == "Asha Rao"
        assert context.masked_admin == "fr***@seaview.example"

        record = checked_in_store.documents("guests")[GUEST_DOC_ID]
        assert record["isLoggedIn"] is True
        assert record["lastLogin"] == clock()
        assert record["lastHeartbeat"] == clock()
        assert record["logoutReason"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mobile", ["12345", "98765432101", "98765abcde", ""])
    async def test_rejects_malformed_mobile(self, checked_in_store, mobile):
        with pytest.raises(InvalidMobileError, match="Enter a valid 10-digit mobile number"):
            await GuestAccessService(checked_in_store).verify(ADMIN_EMAIL, mobile)

    @pytest.mark.asyncio
    async def test_requires_admin(self, checked_in_store):
        with pytest.raises(MissingAdminError, match="Invalid QR: admin missing"):
            await GuestAccessService(checked_in_store).verify(None, MOBILE)

    @pytest.mark.asyncio
    async def test_no_active_booking(self, checked_in_store):
        checked_in_store.patch_document("guests", GUEST_DOC_ID, {"isActive": False})

        with pytest.raises(NoActiveBookingError, match="No active booking found."):
            await GuestAccessService(checked_in_store).verify(ADMIN_EMAIL, MOBILE)

    @pytest.mark.asyncio
    async def test_second_device_refused(self, checked_in_store):
        service = GuestAccessService(checked_in_store)
        await service.verify(ADMIN_EMAIL, MOBILE)

        with pytest.raises(AlreadyLoggedInError, match="already logged in on another device"):
            await service.verify(ADMIN_EMAIL, MOBILE)

    @pytest.mark.asyncio
    async def test_store_errors_propagate(self):
        store = AsyncMock()
        store.query.side_effect = DocumentStoreError("unavailable")

        with pytest.raises(DocumentStoreError):
            await GuestAccessService(store).verify(ADMIN_EMAIL, MOBILE)
