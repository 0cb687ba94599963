"""
Realtime change feed.

Triggers on ledger_transactions (insert) and promotions (insert, update)
call pg_notify inside the writing transaction, so a change is announced
exactly when it commits, whichever worker or job wrote it. Each API
process runs one ChangeListener that LISTENs on the channel and hands
events to the in-process RealtimeBroker, which fans them out to websocket
subscribers.

Delivery is at-least-once per connection. When a subscriber falls behind
(its queue fills) or the listener loses its database connection, the
affected subscribers are told to resync and are disconnected; a client
that resyncs refetches its state and reconnects.
"""

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

import asyncpg
from sqlalchemy.engine import make_url

from vidgro.config import settings
from vidgro.observability.logging import get_logger
from vidgro.observability.metrics import metrics

logger = get_logger(__name__)

# Must match the channel used by notify_row_change() in the migrations
CHANGE_CHANNEL = "vidgro_changes"


class ChangeTable(str, Enum):
    LEDGER_TRANSACTIONS = "ledger_transactions"
    PROMOTIONS = "promotions"


class ChangeOperation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change as announced by the database."""

    table: ChangeTable
    operation: ChangeOperation
    record_id: UUID
    account_id: UUID
    occurred_at: datetime
    record: dict[str, Any]

    @classmethod
    def from_notification(cls, payload: str) -> "ChangeEvent":
        """
        Parse a NOTIFY payload.

        Raises:
            ValueError: Payload is not a change announcement
        """
        try:
            body = json.loads(payload)
            return cls(
                table=ChangeTable(body["table"]),
                operation=ChangeOperation(body["operation"]),
                record_id=UUID(body["record_id"]),
                account_id=UUID(body["account_id"]),
                occurred_at=datetime.fromisoformat(body["occurred_at"]),
                record=dict(body["record"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"Malformed change notification: {exc}") from exc

    def to_message(self) -> dict[str, Any]:
        """JSON-safe representation sent over the websocket."""
        return {
            "type": "change",
            "table": self.table.value,
            "operation": self.operation.value,
            "record_id": str(self.record_id),
            "occurred_at": self.occurred_at.isoformat(),
            "record": self.record,
        }


class Subscription:
    """
    One websocket's view of the feed.

    `get` returns None once the subscription needs a resync; nothing is
    queued after that.
    """

    def __init__(self, account_id: UUID, maxsize: int) -> None:
        self.account_id = account_id
        self.queue: asyncio.Queue[ChangeEvent | None] = asyncio.Queue(maxsize=maxsize)
        self.needs_resync = False

    def wants(self, event: ChangeEvent) -> bool:
        # Promotion changes are public (queue refresh); ledger rows are private
        return event.table == ChangeTable.PROMOTIONS or event.account_id == self.account_id

    def offer(self, event: ChangeEvent) -> None:
        if self.needs_resync:
            return
        if self.queue.full():
            logger.warning("realtime_subscriber_overflow", account_id=str(self.account_id))
            self.request_resync("overflow")
            return
        self.queue.put_nowait(event)

    def request_resync(self, cause: str) -> None:
        if self.needs_resync:
            return
        self.needs_resync = True
        metrics.realtime_resyncs_total.labels(cause=cause).inc()
        while not self.queue.empty():
            self.queue.get_nowait()
        self.queue.put_nowait(None)

    async def get(self) -> ChangeEvent | None:
        return await self.queue.get()


class RealtimeBroker:
    """In-process fan-out of change events to subscribers."""

    def __init__(self, queue_size: int | None = None) -> None:
        self.queue_size = queue_size or settings.realtime_queue_size
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, account_id: UUID) -> Subscription:
        subscription = Subscription(account_id, self.queue_size)
        self._subscriptions.add(subscription)
        logger.debug("realtime_subscribed", account_id=str(account_id))
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def publish(self, event: ChangeEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.wants(event):
                subscription.offer(event)

    def resync_all(self) -> None:
        """Tell every subscriber its stream has a gap."""
        for subscription in list(self._subscriptions):
            subscription.request_resync("listener_gap")


def listener_dsn(database_url: str | None = None) -> str:
    """asyncpg wants a plain postgresql:// DSN without the SQLAlchemy driver suffix."""
    url = make_url(database_url or settings.database_url).set(drivername="postgresql")
    return url.render_as_string(hide_password=False)


class ChangeListener:
    """Feeds a broker from LISTEN on the change channel, reconnecting on loss."""

    def __init__(self, feed: RealtimeBroker, dsn: str | None = None) -> None:
        self.feed = feed
        self.dsn = dsn or listener_dsn()
        self.connection: asyncpg.Connection | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._stopping = False

    async def start(self) -> None:
        self._stopping = False
        try:
            await self._connect()
        except (OSError, asyncpg.PostgresError) as exc:
            logger.error("realtime_listener_connect_failed", error=str(exc))
            self._schedule_reconnect()

    async def stop(self) -> None:
        self._stopping = True
        if self._reconnect_task is not None:
            self._reconnect_task.cancel()
            await asyncio.gather(self._reconnect_task, return_exceptions=True)
            self._reconnect_task = None
        if self.connection is not None and not self.connection.is_closed():
            await self.connection.remove_listener(CHANGE_CHANNEL, self._on_notification)
            await self.connection.close()
        self.connection = None
        logger.info("realtime_listener_stopped")

    def _on_notification(
        self, connection: asyncpg.Connection, pid: int, channel: str, payload: str
    ) -> None:
        try:
            event = ChangeEvent.from_notification(payload)
        except ValueError as exc:
            logger.error("realtime_notification_invalid", channel=channel, error=str(exc))
            return
        metrics.realtime_events_total.labels(table=event.table.value).inc()
        self.feed.publish(event)

    def _on_terminated(self, connection: asyncpg.Connection) -> None:
        if self._stopping:
            return
        logger.warning("realtime_listener_disconnected")
        self.connection = None
        self.feed.resync_all()
        self._schedule_reconnect()

    async def _connect(self) -> None:
        connection = await asyncpg.connect(self.dsn)
        await connection.add_listener(CHANGE_CHANNEL, self._on_notification)
        connection.add_termination_listener(self._on_terminated)
        self.connection = connection
        logger.info("realtime_listener_started", channel=CHANGE_CHANNEL)

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is None or self._reconnect_task.done():
            self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        while not self._stopping:
            await asyncio.sleep(settings.realtime_reconnect_seconds)
            try:
                await self._connect()
            except (OSError, asyncpg.PostgresError) as exc:
                logger.warning("realtime_listener_reconnect_failed", error=str(exc))
                continue
            # Subscribers that joined while we were down missed changes too
            self.feed.resync_all()
            return


# Process-wide broker and listener used by the API
broker = RealtimeBroker()
listener = ChangeListener(broker)
