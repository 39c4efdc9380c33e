from datetime import datetime, timedelta, timezone

import pytest

from roomio.clients import LocalStateStore, MemoryDocumentStore
from roomio.models import GuestContext

ADMIN_ID = "admin-1"
ADMIN_EMAIL = "frontdesk@seaview.example"
MOBILE = "9876543210"
ROOM = 204
GUEST_DOC_ID = "guest-1"


class FakeClock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, minutes: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes)
        return self.now


class FakeRedis:
    """In-memory stand-in for the async Redis client."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value
        return True

    async def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 14, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return MemoryDocumentStore(clock=clock)


@pytest.fixture
def redis_client():
    return FakeRedis()


@pytest.fixture
def local_state(redis_client):
    return LocalStateStore(redis_client=redis_client, key_prefix="roomio")


@pytest.fixture
def guest_record(clock):
    """Logged-in guest booking as the access screen leaves it."""
    return {
        "adminId": ADMIN_ID,
        "adminEmail": ADMIN_EMAIL,
        "mobile": MOBILE,
        "roomNumber": ROOM,
        "guestName": "Asha Rao",
        "isActive": True,
        "isLoggedIn": True,
        "lastLogin": clock(),
        "lastHeartbeat": clock(),
    }


@pytest.fixture
def seeded_store(store, guest_record):
    store.set_document("guests", GUEST_DOC_ID, guest_record)
    return store


@pytest.fixture
def context():
    return GuestContext(
        guest_name="Asha Rao",
        room_number=ROOM,
        mobile=MOBILE,
        admin_email=ADMIN_EMAIL,
        admin_id=ADMIN_ID,
        guest_doc_id=GUEST_DOC_ID,
    )


@pytest.fixture
def identity(context):
    return context.identity
