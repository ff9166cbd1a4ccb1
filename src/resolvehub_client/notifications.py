"""Time-bounded queue of user-facing notifications (toasts)."""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Callable, Optional

from resolvehub_client.schemas import Notification, NotificationKind
from resolvehub_client.utils import get_logger

logger = get_logger(__name__)

DEFAULT_TTL_SECONDS = 5.0


class NotificationQueue:
    """Ordered notifications, each removed after ``ttl`` seconds or on dismissal.

    Every ``push`` schedules exactly one removal callback on the running event
    loop. ``dismiss`` and ``clear`` cancel the pending callbacks so nothing fires
    against a torn-down session.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ttl = ttl
        self._loop = loop
        self._clock = clock
        self._items: list[Notification] = []
        self._handles: dict[int, asyncio.TimerHandle] = {}
        self._last_id = 0
        self._listeners: list[Callable[[Notification], None]] = []

    @property
    def items(self) -> tuple[Notification, ...]:
        return tuple(self._items)

    @property
    def pending_timers(self) -> int:
        return len(self._handles)

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        self._listeners.append(listener)

    def push(self, message: str, kind: NotificationKind | str = NotificationKind.INFO) -> int:
        loop = self._loop or asyncio.get_running_loop()
        now = self._clock()
        # Millisecond timestamps collide when two pushes share a tick.
        notification_id = max(int(now * 1000), self._last_id + 1)
        self._last_id = notification_id

        notification = Notification(
            id=notification_id,
            message=message,
            kind=NotificationKind(kind),
            created_at=datetime.fromtimestamp(now),
        )
        self._items.append(notification)
        self._handles[notification_id] = loop.call_later(
            self.ttl, self._expire, notification_id
        )
        logger.debug("Notification %s queued (%s)", notification_id, notification.kind.value)

        for listener in list(self._listeners):
            listener(notification)
        return notification_id

    def dismiss(self, notification_id: int) -> None:
        handle = self._handles.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
        self._remove(notification_id)

    def clear(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        self._items.clear()

    def _expire(self, notification_id: int) -> None:
        self._handles.pop(notification_id, None)
        self._remove(notification_id)
        logger.debug("Notification %s expired", notification_id)

    def _remove(self, notification_id: int) -> None:
        self._items = [item for item in self._items if item.id != notification_id]
