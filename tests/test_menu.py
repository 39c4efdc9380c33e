"""Tests for the menu, cart and food order placement."""

import pytest

from roomio.services.menu_service import (
    Cart,
    EmptyCartError,
    MenuService,
    OrderFailedError,
    OrderPermissionError,
    UnavailableItemError,
    place_order,
)

from conftest import ADMIN_ID

MENU_PATH = f"users/{ADMIN_ID}/menuItems"
ORDERS_PATH = f"users/{ADMIN_ID}/foodOrders"


@pytest.fixture
def menu_store(store):
    store.set_document(MENU_PATH, "tea", {"name": "Tea", "price": 20, "category": "breakfast"})
    store.set_document(MENU_PATH, "toast", {"name": "Toast", "price": 40, "category": "breakfast"})
    store.set_document(MENU_PATH, "thali", {"name": "Thali", "price": 250, "category": "lunch"})
    store.set_document(MENU_PATH, "soup", {"name": "Soup", "price": 90, "category": "dinner", "isAvailable": False})
    return store


@pytest.fixture
def menu(menu_store):
    service = MenuService(menu_store, ADMIN_ID)
    service.watch()
    return service


class TestMenuService:
    """Tests for the live menu."""

    def test_unavailable_items_hidden(self, menu):
        assert [item.id for item in menu.items] == ["tea", "toast", "thali"]

    def test_categories_in_first_seen_order(self, menu):
        assert menu.categories() == ["all", "breakfast", "lunch"]

    def test_filter(self, menu):
        assert [item.id for item in menu.filter("lunch")] == ["thali"]
        assert len(menu.filter("all")) == 3

    def test_menu_follows_store(self, menu, menu_store):
        menu_store.patch_document(MENU_PATH, "soup", {"isAvailable": True})

        assert "soup" in [item.id for item in menu.items]

    def test_permission_error_reported(self, store):
        store.deny(MENU_PATH)
        service = MenuService(store, ADMIN_ID)

        service.watch()

        assert service.items == []
        assert service.error.startswith("Permission denied")

    @pytest.mark.asyncio
    async def test_fetch(self, menu_store):
        items = await MenuService(menu_store, ADMIN_ID).fetch()

        assert len(items) == 3


class TestCart:
    """Tests for cart arithmetic."""

    def test_add_remove_total(self, menu):
        cart = Cart(menu)
        cart.add("tea")
        cart.add("tea")
        cart.add("toast")

        assert cart.item_count == 3
        assert cart.total == 80

        assert cart.remove("tea") == 1
        assert cart.remove("toast") == 0
        assert cart.counts == {"tea": 1}

    def test_lines(self, menu):
        cart = Cart(menu)
        cart.add("thali")
        cart.add("gone")

        lines = cart.lines()

        assert lines[0].name == "Thali"
        assert lines[0].category == "lunch"
        assert lines[1].name == "Unknown"
        assert lines[1].price == 0

    def test_unavailable(self, menu):
        cart = Cart(menu)
        cart.add("tea")
        cart.add("soup")
        cart.add("ghost")

        assert cart.unavailable() == ["soup", "ghost"]


class TestPlaceOrder:
    """Tests for food order creation."""

    @pytest.mark.asyncio
    async def test_empty_cart_rejected(self, menu, menu_store, context):
        with pytest.raises(EmptyCartError, match="Your cart is empty!"):
            await place_order(menu_store, context, Cart(menu))

        assert menu_store.documents(ORDERS_PATH) == {}

    @pytest.mark.asyncio
    async def test_unavailable_items_refused(self, menu, menu_store, context):
        cart = Cart(menu)
        cart.add("tea")
        cart.add("soup")
        cart.add("ghost")

        with pytest.raises(UnavailableItemError) as exc_info:
            await place_order(menu_store, context, cart)

        assert exc_info.value.item_ids == ["soup", "ghost"]
        assert str(exc_info.value) == "Some items are no longer available. Please update your cart."
        assert menu_store.documents(ORDERS_PATH) == {}
        assert cart.item_count == 3

    @pytest.mark.asyncio
    async def test_order_written_pending(self, menu, menu_store, context, clock):
        cart = Cart(menu)
        cart.add("tea")
        cart.add("tea")
        cart.add("toast")

        order_id = await place_order(menu_store, context, cart)

        order = menu_store.documents(ORDERS_PATH)[order_id]
        assert order["status"] == "pending"
        assert order["item"] == "2x Tea, 1x Toast"
        assert order["totalAmount"] == 80
        assert order["guestMobile"] == context.mobile
        assert order["roomNumber"] == context.room_number
        assert order["createdAt"] == clock()
        assert order["source"] == "guest-web"
        assert cart.is_empty

    @pytest.mark.asyncio
    async def test_permission_denied(self, menu, menu_store, context):
        menu_store.deny(ORDERS_PATH)
        cart = Cart(menu)
        cart.add("tea")

        with pytest.raises(OrderPermissionError, match="Permission denied"):
            await place_order(menu_store, context, cart)

        assert not cart.is_empty

    @pytest.mark.asyncio
    async def test_other_failures(self, menu, menu_store, context, monkeypatch):
        from roomio.clients import DocumentStoreError

        async def broken_add(path, data):
            raise DocumentStoreError("deadline exceeded")

        monkeypatch.setattr(menu_store, "add", broken_add)
        cart = Cart(menu)
        cart.add("tea")

        with pytest.raises(OrderFailedError, match="Failed to place order: deadline exceeded"):
            await place_order(menu_store, context, cart)
