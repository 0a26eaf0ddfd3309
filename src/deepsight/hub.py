"""Fan-out of reports to connected subscribers."""

import asyncio
import logging
from typing import Any, Protocol

from deepsight.errors import ProviderFailure, TransportFailure
from deepsight.models import DynamicReport, StaticSnapshot
from deepsight.sampler import Sampler

logger = logging.getLogger(__name__)

SYSTEM_INFO = "system-info"
SYSTEM_UPDATE = "system-update"
DEFAULT_QUEUE_SIZE = 32


class Channel(Protocol):
    """Outbound half of one subscriber's connection."""

    @property
    def id(self) -> str: ...

    async def send(self, event: str, payload: dict[str, Any]) -> None: ...

    async def close(self) -> None: ...


class Subscription:
    """
    A registered channel with its own outbound queue and writer task.

    The single writer keeps delivery to this channel in enqueue order, and a
    slow channel only ever fills its own queue.
    """

    def __init__(self, channel: Channel, queue_size: int, hub: "BroadcastHub") -> None:
        self.channel = channel
        self._hub = hub
        self._queue: asyncio.Queue[tuple[str, StaticSnapshot | DynamicReport]] = asyncio.Queue(
            maxsize=queue_size
        )
        self._writer: asyncio.Task[None] | None = None
        self.cancelled = False
        self.sent = 0

    @property
    def id(self) -> str:
        return self.channel.id

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: str, value: StaticSnapshot | DynamicReport) -> bool:
        """Queue a message without waiting. Returns False when the queue is full."""
        try:
            self._queue.put_nowait((event, value))
        except asyncio.QueueFull:
            return False
        return True

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._write_loop(), name=f"subscriber-{self.id}"
            )

    async def _write_loop(self) -> None:
        while True:
            event, value = await self._queue.get()
            try:
                # Each send serializes its own copy of the immutable record
                await self.channel.send(event, value.to_dict())
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._hub._on_transport_failure(self, TransportFailure(self.id, e))
                return
            self.sent += 1

    async def shutdown(self, close_channel: bool) -> None:
        """Stop the writer and optionally close the channel."""
        self.cancelled = True
        writer = self._writer
        if writer is not None and writer is not asyncio.current_task() and not writer.done():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)
        if close_channel:
            try:
                await self.channel.close()
            except Exception as e:
                logger.warning("Error closing subscriber %s: %s", self.id, e)


class BroadcastHub:
    """
    Registry of live subscribers.

    All registry changes happen on the event loop with no await between the
    membership check and the change, and publish walks a copy of the
    registry, so a join or leave never disturbs a publish in progress.
    """

    def __init__(self, sampler: Sampler, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._sampler = sampler
        self._queue_size = queue_size
        self._subscriptions: dict[str, Subscription] = {}
        self._registering: dict[str, Subscription] = {}
        self._background: set[asyncio.Task[None]] = set()
        self._closed = False
        self.published = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscriber_ids(self) -> list[str]:
        return list(self._subscriptions)

    def get(self, channel_id: str) -> Subscription | None:
        return self._subscriptions.get(channel_id)

    async def register(self, channel: Channel) -> Subscription | None:
        """
        Add a subscriber and queue the static snapshot as its first message.

        If the snapshot cannot be fetched the failure is logged and the
        subscriber still receives dynamic updates.

        Returns:
            The subscription, or None if the channel left (or the hub closed)
            while the snapshot was being fetched.
        """
        existing = self._subscriptions.get(channel.id) or self._registering.get(channel.id)
        if existing is not None:
            return existing

        sub = Subscription(channel, self._queue_size, self)
        self._registering[channel.id] = sub
        try:
            snapshot = await self._sampler.static_snapshot()
        except ProviderFailure as e:
            logger.error("Could not send static info to %s: %s", channel.id, e)
        else:
            sub.offer(SYSTEM_INFO, snapshot)
        finally:
            self._registering.pop(channel.id, None)

        if sub.cancelled or self._closed:
            logger.debug("Subscriber %s left before registration completed", channel.id)
            return None

        self._subscriptions[channel.id] = sub
        sub.start()
        logger.info("Subscriber connected: %s (%d total)", channel.id, self.subscriber_count)
        return sub

    async def unregister(self, channel_id: str, close_channel: bool = False) -> bool:
        """
        Remove a subscriber. Safe to call more than once.

        Returns:
            True if the subscriber was registered.
        """
        pending = self._registering.pop(channel_id, None)
        if pending is not None:
            pending.cancelled = True
        sub = self._subscriptions.pop(channel_id, None)
        if sub is None:
            return pending is not None
        await sub.shutdown(close_channel)
        logger.info("Subscriber disconnected: %s (%d total)", channel_id, self.subscriber_count)
        return True

    def publish(self, report: DynamicReport) -> int:
        """
        Queue a report for every registered subscriber.

        Never raises. A subscriber whose queue is full has stopped keeping up
        and is dropped.

        Returns:
            Number of subscribers the report was queued for.
        """
        delivered = 0
        for sub in list(self._subscriptions.values()):
            if sub.offer(SYSTEM_UPDATE, report):
                delivered += 1
            else:
                logger.warning("Subscriber %s is lagging (%d queued), dropping", sub.id, sub.pending)
                self._drop(sub)
        self.published += 1
        return delivered

    async def broadcast_once(self) -> bool:
        """
        Sample, aggregate and publish. Used as the ticker callback.

        Returns:
            False if sampling failed and nothing was published.
        """
        try:
            report = await self._sampler.report()
        except ProviderFailure as e:
            logger.warning("Sampling tick failed, no update sent: %s", e)
            return False
        count = self.publish(report)
        logger.debug("Published update to %d subscriber(s)", count)
        return True

    async def static_info(self) -> StaticSnapshot:
        """On-demand read of the static snapshot."""
        return await self._sampler.static_snapshot()

    async def refresh(self) -> DynamicReport:
        """Out-of-band sample and aggregate; nothing is published."""
        return await self._sampler.report()

    async def close(self) -> None:
        """Drop every subscriber and close its channel."""
        self._closed = True
        for pending in self._registering.values():
            pending.cancelled = True
        self._registering.clear()
        subs = list(self._subscriptions.values())
        self._subscriptions.clear()
        await asyncio.gather(*(s.shutdown(close_channel=True) for s in subs))
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Broadcast hub closed (%d subscriber(s) dropped)", len(subs))

    def _on_transport_failure(self, sub: Subscription, error: TransportFailure) -> None:
        logger.warning("%s", error)
        self._drop(sub)

    def _drop(self, sub: Subscription) -> None:
        if self._subscriptions.get(sub.id) is not sub:
            return
        del self._subscriptions[sub.id]
        task = asyncio.get_running_loop().create_task(sub.shutdown(close_channel=True))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
