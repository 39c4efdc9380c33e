"""Tests for the guest portal orchestrator."""

import asyncio

import pytest
import pytest_asyncio

from roomio.models import RequestStatus
from roomio.services.gates import FreeQuotaGate
from roomio.services.guest_portal import (
    GuestPortal,
    PortalEventType,
    RequestOutcome,
    SessionInvalidError,
    UnknownServiceError,
)

from conftest import ADMIN_ID, GUEST_DOC_ID

ORDERS_PATH = f"users/{ADMIN_ID}/foodOrders"
MENU_PATH = f"users/{ADMIN_ID}/menuItems"


def drain(portal):
    events = []
    while not portal.events.empty():
        events.append(portal.events.get_nowait())
    return events


@pytest_asyncio.fixture
async def portal(seeded_store, local_state, context, clock):
    portal = GuestPortal(seeded_store, local_state, context, clock=clock, heartbeat_seconds=0)
    assert await portal.start()
    yield portal
    await portal.close()


class TestServiceRequests:
    """Tests for requesting laundry and housekeeping."""

    @pytest.mark.asyncio
    async def test_laundry_request_created_pending(self, portal, seeded_store):
        result = await portal.request_service("laundry")

        assert result.outcome == RequestOutcome.CREATED
        assert result.message == "✅ Laundry pickup request sent!"
        document = seeded_store.documents("serviceRequests")[result.request_id]
        assert document["type"] == "Laundry Pickup"
        assert document["status"] == "pending"
        assert document["charges"] == 0
        assert document["source"] == "guest-web"
        assert document["roomNumber"] == 204
        assert portal.service_requests.ids == [result.request_id]
        assert portal.service_requests.status_of(result.request_id) == RequestStatus.PENDING

    @pytest.mark.asyncio
    async def test_repeat_under_cooldown_is_blocked(self, portal, seeded_store, clock):
        await portal.request_service("laundry")
        clock.advance(minutes=10)

        result = await portal.request_service("laundry")

        assert result.outcome == RequestOutcome.BLOCKED
        assert result.message == "⏳ Available in 50m 0s"
        assert len(seeded_store.documents("serviceRequests")) == 1

    @pytest.mark.asyncio
    async def test_quota_policy_charges_after_free_requests(self, portal, seeded_store, local_state, identity, clock):
        portal.gates["housekeeping"] = FreeQuotaGate(local_state, identity, clock, free_requests=2, charge=100)

        first = await portal.request_service("housekeeping")
        second = await portal.request_service("housekeeping")
        third = await portal.request_service("housekeeping")

        assert first.charge == 0 and second.charge == 0
        assert third.outcome == RequestOutcome.CONFIRMATION_REQUIRED
        assert third.charge == 100
        assert len(seeded_store.documents("serviceRequests")) == 2

        paid = await portal.request_service("housekeeping", confirm_charge=True)

        assert paid.outcome == RequestOutcome.CREATED
        assert seeded_store.documents("serviceRequests")[paid.request_id]["charges"] == 100

    @pytest.mark.asyncio
    async def test_unknown_service(self, portal):
        with pytest.raises(UnknownServiceError):
            await portal.request_service("spa")

    @pytest.mark.asyncio
    async def test_write_failure_reported(self, portal, seeded_store):
        seeded_store.deny("serviceRequests")

        result = await portal.request_service("laundry")

        assert result.outcome == RequestOutcome.FAILED
        assert result.message == "Failed to send request. Check internet / permissions."
        assert portal.service_requests.ids == []
        assert (await portal.gates["laundry"].check("laundry")).allowed

    @pytest.mark.asyncio
    async def test_booking_gone_before_write(self, portal, seeded_store, monkeypatch):
        async def inactive():
            return False

        monkeypatch.setattr(portal.guard, "verify_active", inactive)

        result = await portal.request_service("laundry")

        assert result.outcome == RequestOutcome.SESSION_INVALID
        assert result.message == "Your booking is no longer active."
        assert seeded_store.documents("serviceRequests") == {}
        assert not portal.is_active


class TestTermination:
    """Tests for session invalidation reaching the portal."""

    @pytest.mark.asyncio
    async def test_displacement_emits_one_termination(self, portal, seeded_store):
        drain(portal)

        seeded_store.patch_document("guests", GUEST_DOC_ID, {"isLoggedIn": False})
        seeded_store.patch_document("guests", GUEST_DOC_ID, {"isActive": False})
        await asyncio.sleep(0)

        terminated = [e for e in drain(portal) if e.type == PortalEventType.TERMINATED]
        assert len(terminated) == 1
        assert terminated[0].data["reason"] == "displaced"
        assert not portal.is_active

    @pytest.mark.asyncio
    async def test_requests_refused_after_termination(self, portal, seeded_store):
        seeded_store.delete_document("guests", GUEST_DOC_ID)

        result = await portal.request_service("laundry")

        assert result.outcome == RequestOutcome.SESSION_INVALID
        with pytest.raises(SessionInvalidError):
            await portal.place_food_order(portal.new_cart({"tea": 1}))


class TestProgressAndArrival:
    """Tests for progress ticks, arrival alerts and completion notices."""

    @pytest.mark.asyncio
    async def test_arrival_alert_and_confirmation(self, portal, seeded_store, clock):
        result = await portal.request_service("laundry")
        request_id = result.request_id
        seeded_store.patch_document(
            "serviceRequests",
            request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 10},
        )
        assert portal.estimator.active_ids == [request_id]

        clock.advance(minutes=8, seconds=30)
        portal.estimator.sweep()
        arrivals = [e for e in drain(portal) if e.type == PortalEventType.ARRIVAL]
        assert len(arrivals) == 1
        assert arrivals[0].message == "Your Laundry Pickup is arriving in approximately 2 minutes!"

        assert await portal.confirm_arrival(request_id)

        document = seeded_store.documents("serviceRequests")[request_id]
        assert document["status"] == "completed"
        assert document["completedAt"] == clock()
        assert portal.service_requests.ids == []
        assert portal.estimator.active_ids == []

    @pytest.mark.asyncio
    async def test_confirm_untracked_arrival(self, portal):
        assert not await portal.confirm_arrival("nope")

    @pytest.mark.asyncio
    async def test_progress_ticks_leave_arrival_queued(self, seeded_store, local_state, context, clock):
        portal = GuestPortal(seeded_store, local_state, context, clock=clock, heartbeat_seconds=0, max_events=4)
        assert await portal.start()
        result = await portal.request_service("laundry")
        seeded_store.patch_document(
            "serviceRequests",
            result.request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 10},
        )
        clock.advance(minutes=9)
        portal.estimator.sweep()

        for _ in range(20):
            clock.advance(seconds=1)
            portal.estimator.refresh(result.request_id)

        types = [event.type for event in drain(portal)]
        assert PortalEventType.ARRIVAL in types
        assert "progress" not in [t.value for t in PortalEventType]
        await portal.close()

    @pytest.mark.asyncio
    async def test_arrival_notice_kept_until_confirmed(self, portal, seeded_store, clock):
        result = await portal.request_service("laundry")
        seeded_store.patch_document(
            "serviceRequests",
            result.request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 10},
        )
        clock.advance(minutes=9)
        portal.estimator.sweep()
        drain(portal)

        notices = (await portal.view()).notices
        assert [(n.type, n.request_id) for n in notices] == [(PortalEventType.ARRIVAL, result.request_id)]

        await portal.confirm_arrival(result.request_id)

        assert (await portal.view()).notices == []

    @pytest.mark.asyncio
    async def test_food_completion_notified_once(self, portal, seeded_store):
        seeded_store.set_document(MENU_PATH, "tea", {"name": "Tea", "price": 20, "category": "breakfast"})
        order_id = await portal.place_food_order(portal.new_cart({"tea": 2}))
        drain(portal)

        seeded_store.patch_document(ORDERS_PATH, order_id, {"status": "completed"})
        seeded_store.patch_document(ORDERS_PATH, order_id, {"updatedAt": "2025-03-14T10:00:00Z"})

        completions = [e for e in drain(portal) if e.type == PortalEventType.COMPLETION]
        assert len(completions) == 1
        assert completions[0].message == "Your 2x Tea has been delivered!"

        assert [n.message for n in (await portal.view()).notices] == ["Your 2x Tea has been delivered!"]

        assert await portal.acknowledge_completion(order_id)
        assert portal.food_orders.ids == []
        assert (await portal.view()).notices == []


class TestHistoryAndView:
    """Tests for clearing history and rendering the dashboard."""

    @pytest.mark.asyncio
    async def test_clear_request_history(self, portal, seeded_store, clock):
        result = await portal.request_service("laundry")
        seeded_store.patch_document(
            "serviceRequests",
            result.request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 30},
        )
        assert portal.estimator.active_ids

        await portal.clear_request_history()

        assert portal.service_requests.ids == []
        assert len(portal.service_requests.subscriptions) == 0
        assert portal.estimator.active_ids == []

    @pytest.mark.asyncio
    async def test_clearing_history_drops_notices(self, portal, seeded_store, clock):
        result = await portal.request_service("laundry")
        seeded_store.patch_document(
            "serviceRequests",
            result.request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 10},
        )
        clock.advance(minutes=9)
        portal.estimator.sweep()
        assert portal.notices

        await portal.clear_request_history()

        assert portal.notices == {}
        assert (await portal.view()).notices == []

    @pytest.mark.asyncio
    async def test_view(self, portal, seeded_store, clock):
        result = await portal.request_service("laundry")
        seeded_store.patch_document(
            "serviceRequests",
            result.request_id,
            {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 20},
        )
        clock.advance(minutes=10)
        portal.estimator.refresh(result.request_id)

        view = await portal.view()

        assert view.guest_name == "Asha Rao"
        assert view.room_number == "204"
        assert view.admin == "fr***@seaview.example"
        assert view.session == "active"
        services = {service.key: service for service in view.services}
        assert not services["laundry"].available
        assert services["housekeeping"].available
        row = view.requests[0]
        assert row.label == "IN PROGRESS"
        assert row.name == "Laundry Pickup"
        assert row.percentage == 50.0
        assert row.remaining_label == "10m"

    @pytest.mark.asyncio
    async def test_history_survives_restart(self, portal, seeded_store, local_state, context, clock):
        result = await portal.request_service("laundry")
        await portal.close()

        reopened = GuestPortal(seeded_store, local_state, context, clock=clock, heartbeat_seconds=0)
        assert await reopened.start()

        assert reopened.service_requests.ids == [result.request_id]
        assert reopened.service_requests.status_of(result.request_id) == RequestStatus.PENDING
        await reopened.close()
