"""Keyed registries for live subscriptions and timer tasks."""

import asyncio
from typing import Any, Callable, Coroutine, Iterable

from structlog import get_logger

from roomio.clients.document_store import Subscription

logger = get_logger(__name__)


class SubscriptionRegistry:
    """Exactly one live subscription per key.

    ``reconcile`` diffs the desired keys against the active ones, opening
    subscriptions for new keys and tearing down the rest. Calling it again
    with the same keys does nothing.
    """

    def __init__(self, subscribe: Callable[[str], Subscription]):
        self._subscribe = subscribe
        self._subscriptions: dict[str, Subscription] = {}

    @property
    def active_keys(self) -> list[str]:
        return list(self._subscriptions)

    def __contains__(self, key: str) -> bool:
        return key in self._subscriptions

    def __len__(self) -> int:
        return len(self._subscriptions)

    def reconcile(self, keys: Iterable[str]) -> None:
        desired = list(dict.fromkeys(keys))
        for key in [k for k in self._subscriptions if k not in desired]:
            self.cancel(key)
        for key in desired:
            if key not in self._subscriptions:
                # Reserve the slot first: the store may deliver the initial
                # snapshot before subscribe() returns.
                self._subscriptions[key] = Subscription(lambda: None)
                subscription = self._subscribe(key)
                if key in self._subscriptions:
                    self._subscriptions[key] = subscription
                else:
                    subscription.unsubscribe()

    def cancel(self, key: str) -> None:
        subscription = self._subscriptions.pop(key, None)
        if subscription is not None:
            subscription.unsubscribe()

    def cancel_all(self) -> None:
        for key in list(self._subscriptions):
            self.cancel(key)


class TaskRegistry:
    """Supervised asyncio tasks keyed by name; at most one task per key."""

    def __init__(self, name: str = "tasks"):
        self.name = name
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def active_keys(self) -> list[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    def __contains__(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def spawn(self, key: str, factory: Callable[[], Coroutine[Any, Any, None]]) -> bool:
        """Start a task for ``key`` unless one is already running.

        Returns:
            True if a new task was started
        """
        if key in self:
            return False
        task = asyncio.get_running_loop().create_task(factory(), name=f"{self.name}:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, key=key: self._on_done(key, t))
        return True

    def _on_done(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                registry=self.name,
                key=key,
                error=str(error),
            )

    def cancel(self, key: str) -> None:
        task = self._tasks.pop(key, None)
        if task is not None and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    async def shutdown(self) -> None:
        """Cancel every task and wait for them to finish."""
        tasks = list(self._tasks.values())
        self.cancel_all()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
