"""
Event Bus - In-process broadcast channels with an explicit replay policy.

Channels are owned by the coordinator or importer that creates them and are
torn down together with it.

Replay policy:
- replay=True: a new subscriber first receives the most recent value
  (status-like data: sign-in state, subscription status, entitlements)
- replay=False: a new subscriber only sees values published after it
  subscribed (transient action results such as purchase outcomes)

publish() never suspends, so values published back-to-back from one
coroutine reach every subscriber before any of them gets to run.
"""

import asyncio
from collections.abc import Callable, Iterable
from typing import Generic, TypeVar

from structlog import get_logger

from reconciler.exceptions import ChannelClosedError

logger = get_logger(__name__)

T = TypeVar("T")

_CLOSED = object()


class ChannelSubscription(Generic[T]):
    """
    Live subscription to one channel.

    Registered at construction time, so nothing published afterwards is
    missed even if iteration starts later. Iteration ends when the channel
    or the subscription is closed.
    """

    def __init__(
        self,
        channel: "EventChannel[T]",
        predicate: Callable[[T], bool] | None,
    ) -> None:
        self._channel = channel
        self._predicate = predicate
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    def _offer(self, value: T) -> None:
        if self._closed:
            return
        if self._predicate is None or self._predicate(value):
            self._queue.put_nowait(value)

    def _terminate(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Stop receiving values; values already queued are still delivered."""
        self._channel._unregister(self)
        self._terminate()

    def __aiter__(self) -> "ChannelSubscription[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item  # type: ignore[return-value]


class EventChannel(Generic[T]):
    """Broadcast channel with optional replay of the latest value."""

    def __init__(self, name: str, replay: bool) -> None:
        self.name = name
        self.replay = replay
        self._subscribers: list[ChannelSubscription[T]] = []
        self._latest: T | None = None
        self._has_value = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, value: T) -> None:
        """Deliver a value to every current subscriber."""
        if self._closed:
            raise ChannelClosedError(self.name)
        if self.replay:
            self._latest = value
            self._has_value = True
        for subscription in list(self._subscribers):
            subscription._offer(value)

    def subscribe(
        self,
        predicate: Callable[[T], bool] | None = None,
        initial: Iterable[T] = (),
    ) -> ChannelSubscription[T]:
        """
        Register a new subscriber.

        Args:
            predicate: Only values for which this returns True are delivered
            initial: Values delivered before anything published later, used
                by owners that keep their own replay state (e.g. per job)

        Returns:
            Subscription to iterate with ``async for``
        """
        subscription: ChannelSubscription[T] = ChannelSubscription(self, predicate)
        for value in initial:
            subscription._offer(value)
        if self.replay and self._has_value:
            subscription._offer(self._latest)  # type: ignore[arg-type]
        if self._closed:
            subscription._terminate()
        else:
            self._subscribers.append(subscription)
        return subscription

    def close(self) -> None:
        """End every subscription; later publishes raise ChannelClosedError."""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscribers:
            subscription._terminate()
        self._subscribers.clear()

    def _unregister(self, subscription: ChannelSubscription[T]) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)


class EventBus:
    """Named channels owned by one component and closed together."""

    def __init__(self) -> None:
        self._channels: dict[str, EventChannel] = {}  # type: ignore[type-arg]

    def channel(self, name: str, replay: bool) -> EventChannel:  # type: ignore[type-arg]
        """Create a channel, or return the existing one with the same name."""
        existing = self._channels.get(name)
        if existing is not None:
            if existing.replay != replay:
                raise ValueError(f"Channel {name} already exists with replay={existing.replay}")
            return existing
        channel: EventChannel = EventChannel(name, replay=replay)  # type: ignore[type-arg]
        self._channels[name] = channel
        return channel

    def close(self) -> None:
        """Close every channel."""
        for channel in self._channels.values():
            channel.close()
        logger.debug("event_bus_closed", channels=list(self._channels))
