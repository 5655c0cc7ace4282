"""Outbound notification hand-off.

Triggers never call the notifier directly. They stage a ``Notification``
on the session (the outbox); the service that owns the transaction
delivers the outbox after commit and drops it on rollback. Delivery
itself goes through ``BackgroundNotifier`` so a slow or broken
integration cannot hold up a write.
"""
import logging
import queue
import threading
from typing import List, Optional, Protocol, runtime_checkable

from notd_core.config import config
from notd_core.models.schema import Notification

logger = logging.getLogger(__name__)

OUTBOX_KEY = "notd_core.outbox"


@runtime_checkable
class Notifier(Protocol):
    """Receives notifications decided by the trigger dispatcher.

    Implementations own signing, delivery, retry and history.
    """

    def notify(self, owner_type: str, owner_id: int,
               property_name: str, property_value: str) -> None:
        ...


class NullNotifier:
    """Discards every notification."""

    def notify(self, owner_type, owner_id, property_name, property_value) -> None:
        return None


class LoggingNotifier:
    """Writes every notification to the log."""

    def notify(self, owner_type, owner_id, property_name, property_value) -> None:
        logger.info(
            f"Notification: {owner_type} {owner_id} {property_name}={property_value!r}"
        )


_STOP = object()


class BackgroundNotifier:
    """Delivers notifications to a delegate from a daemon worker thread.

    ``notify`` only enqueues, so callers never wait on the delegate.
    Calls reach the delegate in the order they were enqueued. Delegate
    errors are logged and the worker carries on.
    """

    def __init__(self, delegate: Notifier, max_queue: int = 10000):
        self.delegate = delegate
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_queue)
        self._worker: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run, name="notd-notifier", daemon=True
                )
                self._worker.start()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                try:
                    self.delegate.notify(*item)
                except Exception as e:
                    logger.error(f"Notifier delegate failed for {item[0]} {item[1]} {item[2]}: {e}")
            finally:
                self._queue.task_done()

    def notify(self, owner_type, owner_id, property_name, property_value) -> None:
        self._ensure_worker()
        try:
            self._queue.put_nowait((owner_type, owner_id, property_name, property_value))
        except queue.Full:
            logger.warning(
                f"Notification queue full, dropping {property_name} for {owner_type} {owner_id}"
            )

    def flush(self) -> None:
        """Block until every queued notification has been handed to the delegate."""
        if self._worker is not None:
            self._queue.join()

    def close(self) -> None:
        """Stop the worker after it drains the queue."""
        if self._worker is not None and self._worker.is_alive():
            self._queue.put(_STOP)
            self._worker.join()
        self._worker = None


def default_notifier() -> Notifier:
    """Notifier used when a service is built without one."""
    if not config.notifications_enabled:
        return NullNotifier()
    return BackgroundNotifier(LoggingNotifier())


# Outbox

def stage_notification(session, notification: Notification) -> None:
    session.info.setdefault(OUTBOX_KEY, []).append(notification)


def outbox_mark(session) -> int:
    """Current outbox length, for discarding what a savepoint staged."""
    return len(session.info.get(OUTBOX_KEY, []))


def discard_since(session, mark: int) -> None:
    """Drop notifications staged after ``mark``."""
    staged = session.info.get(OUTBOX_KEY)
    if staged:
        del staged[mark:]


def take_outbox(session) -> List[Notification]:
    """Remove and return everything staged on the session."""
    return session.info.pop(OUTBOX_KEY, [])


def deliver(notifier: Notifier, notifications: List[Notification]) -> int:
    """Hand notifications to ``notifier`` in order.

    Failures are logged and skipped. Returns the number delivered.
    """
    delivered = 0
    for n in notifications:
        try:
            notifier.notify(n.owner_type, n.owner_id, n.property_name, n.property_value)
            delivered += 1
        except Exception as e:
            logger.error(f"Failed to deliver notification {n.property_name} for "
                         f"{n.owner_type} {n.owner_id}: {e}")
    return delivered
