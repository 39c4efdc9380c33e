"""Hotel menu, guest cart and food order placement."""

from typing import Callable, Optional

from pydantic import ValidationError
from structlog import get_logger

from roomio.clients.document_store import (
    SERVER_TIMESTAMP,
    Document,
    DocumentStore,
    DocumentStoreError,
    PermissionDeniedError,
    Subscription,
)
from roomio.config import settings
from roomio.models.guest import GuestContext
from roomio.models.menu import MenuItem
from roomio.models.requests import OrderLine, summarize_lines

logger = get_logger(__name__)


class OrderError(Exception):
    """Base exception for food order failures."""

    pass


class EmptyCartError(OrderError):
    """Raised when an order is placed with nothing in the cart."""

    pass


class UnavailableItemError(OrderError):
    """Raised when the cart holds items that are not on the live menu."""

    def __init__(self, item_ids: list[str]):
        self.item_ids = item_ids
        super().__init__(
            "Some items are no longer available. Please update your cart."
        )


class OrderPermissionError(OrderError):
    """Raised when the store refuses the food order write."""

    pass


class OrderFailedError(OrderError):
    """Raised when the food order could not be written."""

    pass


MenuCallback = Callable[[list[MenuItem]], None]


class MenuService:
    """Live view of a hotel's available menu items."""

    def __init__(self, store: DocumentStore, admin_id: str):
        self.store = store
        self.admin_id = admin_id
        self.path = settings.menu_items_path(admin_id)
        self.items: list[MenuItem] = []
        self.error: Optional[str] = None
        self.loaded = False
        self._subscription: Optional[Subscription] = None
        self._on_change: Optional[MenuCallback] = None

    @staticmethod
    def available(documents: list[Document]) -> list[MenuItem]:
        """Parse menu documents, dropping unreadable and unavailable items."""
        items = []
        for document in documents:
            try:
                item = MenuItem.model_validate({**document.data, "id": document.id})
            except ValidationError as e:
                logger.warning("Skipping unreadable menu item", item_id=document.id, error=str(e))
                continue
            if item.is_available:
                items.append(item)
        return items

    async def fetch(self) -> list[MenuItem]:
        """One-shot read of the available menu.

        Raises:
            DocumentStoreError: If the menu cannot be read
        """
        documents = await self.store.query(self.path, {})
        self.items = self.available(documents)
        self.loaded = True
        return list(self.items)

    def watch(self, on_change: Optional[MenuCallback] = None) -> None:
        """Keep ``items`` in sync with the store."""
        if self._subscription is not None:
            return
        self._on_change = on_change
        self._subscription = self.store.watch_query(
            self.path, {}, on_snapshot=self._on_snapshot, on_error=self._on_error
        )

    def _on_snapshot(self, documents: list[Document]) -> None:
        self.items = self.available(documents)
        self.error = None
        self.loaded = True
        logger.debug("Menu updated", admin_id=self.admin_id, count=len(self.items))
        if self._on_change is not None:
            self._on_change(list(self.items))

    def _on_error(self, error: DocumentStoreError) -> None:
        if isinstance(error, PermissionDeniedError):
            self.error = (
                "Permission denied. The menu items path must allow public read access."
            )
        else:
            self.error = f"Error: {error}"
        self.loaded = True
        logger.error("Menu listener failed", admin_id=self.admin_id, error=str(error))

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def get(self, item_id: str) -> Optional[MenuItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def categories(self) -> list[str]:
        """``"all"`` followed by item categories in first-seen order."""
        seen = dict.fromkeys(item.category for item in self.items if item.category)
        return ["all", *seen]

    def filter(self, category: str = "all") -> list[MenuItem]:
        if category == "all":
            return list(self.items)
        return [item for item in self.items if item.category == category]


class Cart:
    """Item counts keyed by menu item id, priced against the live menu."""

    def __init__(self, menu: MenuService):
        self.menu = menu
        self.counts: dict[str, int] = {}

    def add(self, item_id: str) -> int:
        self.counts[item_id] = self.counts.get(item_id, 0) + 1
        return self.counts[item_id]

    def remove(self, item_id: str) -> int:
        count = self.counts.get(item_id, 0)
        if count > 1:
            self.counts[item_id] = count - 1
            return count - 1
        self.counts.pop(item_id, None)
        return 0

    def set_count(self, item_id: str, count: int) -> None:
        if count > 0:
            self.counts[item_id] = count
        else:
            self.counts.pop(item_id, None)

    def clear(self) -> None:
        self.counts.clear()

    @property
    def is_empty(self) -> bool:
        return not self.counts

    @property
    def item_count(self) -> int:
        return sum(self.counts.values())

    def unavailable(self) -> list[str]:
        """Ids in the cart that the live menu does not offer."""
        return [item_id for item_id in self.counts if self.menu.get(item_id) is None]

    def lines(self) -> list[OrderLine]:
        """Display lines for the cart; items gone from the menu show as "Unknown"."""
        lines = []
        for item_id, count in self.counts.items():
            item = self.menu.get(item_id)
            lines.append(
                OrderLine(
                    name=item.name if item else "Unknown",
                    price=item.unit_price if item else 0.0,
                    count=count,
                    category=(item.category if item and item.category else "unknown"),
                )
            )
        return lines

    @property
    def total(self) -> float:
        return sum(line.subtotal for line in self.lines())


async def place_order(store: DocumentStore, context: GuestContext, cart: Cart) -> str:
    """Create a pending food order from the cart.

    Args:
        store: Document store to write to
        context: Verified guest placing the order
        cart: Cart to order; left untouched on failure

    Returns:
        Id of the created food order

    Raises:
        EmptyCartError: If the cart is empty
        UnavailableItemError: If an item is hidden or missing from the menu
        OrderPermissionError: If the store refused the write
        OrderFailedError: If the write failed for any other reason
    """
    if cart.is_empty:
        raise EmptyCartError("Your cart is empty!")
    missing = cart.unavailable()
    if missing:
        logger.warning("Order refused for unavailable items", admin_id=context.admin_id, item_ids=missing)
        raise UnavailableItemError(missing)

    lines = cart.lines()
    payload = {
        "adminId": context.admin_id,
        "roomNumber": context.room_number,
        "guestName": context.guest_name or "Guest",
        "guestMobile": context.mobile,
        "item": summarize_lines(lines),
        "orderDetails": [line.model_dump() for line in lines],
        "totalAmount": sum(line.subtotal for line in lines),
        "status": "pending",
        "createdAt": SERVER_TIMESTAMP,
        "source": settings.portal.request_source,
    }

    try:
        order_id = await store.add(settings.food_orders_path(context.admin_id), payload)
    except PermissionDeniedError as e:
        logger.error("Food order refused", admin_id=context.admin_id, error=str(e))
        raise OrderPermissionError(
            "Permission denied. Please check security rules for foodOrders."
        ) from e
    except DocumentStoreError as e:
        logger.error("Failed to place food order", admin_id=context.admin_id, error=str(e))
        raise OrderFailedError(f"Failed to place order: {e}") from e

    logger.info(
        "Food order placed",
        order_id=order_id,
        room_number=str(context.room_number),
        items=len(lines),
        total=payload["totalAmount"],
    )
    cart.clear()
    return order_id
