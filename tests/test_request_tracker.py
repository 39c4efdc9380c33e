"""Tests for the request tracker."""

import asyncio
import json

import pytest

from roomio.models import RequestStatus
from roomio.services.progress import ProgressEstimator
from roomio.services.request_tracker import RequestTracker

COLLECTION = "serviceRequests"
STORAGE_KEY = "roomio:requests:admin-1:9876543210:204"


@pytest.fixture
def changes():
    return []


@pytest.fixture
def estimator(clock):
    return ProgressEstimator(clock=clock, tick_seconds=10)


@pytest.fixture
def tracker(store, local_state, estimator, changes):
    return RequestTracker(
        store,
        local_state,
        storage_key=STORAGE_KEY,
        collection_path=COLLECTION,
        kind="service",
        estimator=estimator,
        on_change=lambda entry, previous: changes.append((entry.request_id, previous, entry.status)),
    )


def seed_request(store, request_id, **fields):
    data = {"type": "Laundry Pickup", "status": "pending", "adminId": "admin-1"}
    data.update(fields)
    store.set_document(COLLECTION, request_id, data)


class TestIdList:
    """Tests for the persisted id list."""

    @pytest.mark.asyncio
    async def test_add_same_id_twice_moves_to_front(self, tracker, redis_client):
        await tracker.add_id("a")
        await tracker.add_id("b")
        ids = await tracker.add_id("a")

        assert ids == ["a", "b"]
        assert json.loads(redis_client.data[STORAGE_KEY]) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_is_capped_at_thirty(self, tracker, store):
        for i in range(31):
            ids = await tracker.add_id(f"req-{i}")

        assert len(ids) == 30
        assert ids[0] == "req-30"
        assert "req-0" not in ids
        assert len(tracker.subscriptions) == 30
        assert store.active_listener_count == 30

    @pytest.mark.asyncio
    async def test_load_restores_persisted_ids(self, tracker, redis_client):
        redis_client.data[STORAGE_KEY] = json.dumps(["x", "y", "x"])

        ids = await tracker.load()

        assert ids == ["x", "y"]
        assert sorted(tracker.subscriptions.active_keys) == ["x", "y"]

    @pytest.mark.asyncio
    async def test_malformed_storage_reads_as_empty(self, tracker, redis_client):
        redis_client.data[STORAGE_KEY] = "{not json"

        assert await tracker.load() == []

    @pytest.mark.asyncio
    async def test_clear_cancels_subscriptions_and_timers(self, tracker, store, estimator, clock, redis_client):
        seed_request(store, "a", status="in-progress", acceptedAt=clock(), estimatedTime=30)
        seed_request(store, "b")
        await tracker.add_id("a")
        await tracker.add_id("b")
        assert estimator.active_ids == ["a"]

        await tracker.clear()

        assert tracker.ids == []
        assert STORAGE_KEY not in redis_client.data
        assert len(tracker.subscriptions) == 0
        assert store.active_listener_count == 0
        assert estimator.active_ids == []
        await estimator.shutdown()

    @pytest.mark.asyncio
    async def test_remove_id_tears_down_one_subscription(self, tracker, store):
        await tracker.add_id("a")
        await tracker.add_id("b")

        await tracker.remove_id("a")

        assert tracker.ids == ["b"]
        assert tracker.subscriptions.active_keys == ["b"]
        assert store.active_listener_count == 1


class TestLiveStatus:
    """Tests for per-id snapshot handling."""

    @pytest.mark.asyncio
    async def test_status_follows_store(self, tracker, store, changes):
        seed_request(store, "a")
        await tracker.add_id("a")
        assert tracker.status_of("a") == RequestStatus.PENDING

        store.patch_document(COLLECTION, "a", {"status": "accepted"})

        assert tracker.status_of("a") == RequestStatus.ACCEPTED
        assert changes[-1] == ("a", RequestStatus.PENDING, RequestStatus.ACCEPTED)

    @pytest.mark.asyncio
    async def test_external_deletion_marks_deleted_and_keeps_id(self, tracker, store):
        seed_request(store, "a")
        await tracker.add_id("a")

        store.delete_document(COLLECTION, "a")

        assert tracker.status_of("a") == RequestStatus.DELETED
        assert tracker.ids == ["a"]

    @pytest.mark.asyncio
    async def test_refused_listener_marks_restricted(self, tracker, store):
        store.deny(COLLECTION, "secret")

        await tracker.add_id("secret")

        assert tracker.status_of("secret") == RequestStatus.RESTRICTED
        assert tracker.entries["secret"].error is not None
        assert tracker.ids == ["secret"]

    @pytest.mark.asyncio
    async def test_in_progress_starts_tick_and_completion_stops_it(self, tracker, store, estimator, clock):
        seed_request(store, "a", status="accepted")
        await tracker.add_id("a")
        assert estimator.active_ids == []

        store.patch_document(COLLECTION, "a", {"status": "in-progress", "acceptedAt": clock(), "estimatedTime": 15})
        assert estimator.active_ids == ["a"]

        store.patch_document(COLLECTION, "a", {"status": "completed"})
        assert estimator.active_ids == []
        await estimator.shutdown()

    @pytest.mark.asyncio
    async def test_ordered_entries_most_recent_first(self, tracker, store):
        seed_request(store, "a")
        seed_request(store, "b")
        await tracker.add_id("a")
        await tracker.add_id("b")

        assert [entry.request_id for entry in tracker.ordered_entries()] == ["b", "a"]


class TestDiscovery:
    """Tests for adopting requests created from another device."""

    @pytest.mark.asyncio
    async def test_discovers_open_requests(self, tracker, store):
        seed_request(store, "old", status="completed", guestMobile="9876543210")
        seed_request(store, "open", status="pending", guestMobile="9876543210")
        seed_request(store, "other", status="pending", guestMobile="1111111111")

        tracker.discover({"guestMobile": "9876543210"})
        await asyncio.sleep(0.01)

        assert tracker.ids == ["open"]
        tracker.close()

    @pytest.mark.asyncio
    async def test_cleared_ids_are_not_rediscovered(self, tracker, store):
        seed_request(store, "open", status="pending", guestMobile="9876543210")
        tracker.discover({"guestMobile": "9876543210"})
        await asyncio.sleep(0.01)

        await tracker.clear()
        store.patch_document(COLLECTION, "open", {"status": "accepted"})
        await asyncio.sleep(0.01)

        assert tracker.ids == []
        tracker.close()
