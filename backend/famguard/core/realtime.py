"""In-process change feed for realtime row updates.

Writers publish a ChangeEvent after committing an INSERT or UPDATE; every open
channel whose filters match the event gets it delivered to its handler. A channel
is one subscription scope: a name, a list of filters and a handler.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)


class ChangeKind(str, enum.Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"


class ChannelStatus(str, enum.Enum):
    SUBSCRIBED = "SUBSCRIBED"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed row change on a watched table."""

    table: str
    kind: ChangeKind
    new: dict[str, Any]
    old: dict[str, Any] | None = None


@dataclass(frozen=True)
class ChangeFilter:
    """Match rows of `table` whose `column` value is in `values`.

    column=None matches every row of the table.
    """

    table: str
    column: str | None = None
    values: frozenset[Any] = frozenset()
    kinds: frozenset[ChangeKind] = frozenset({ChangeKind.INSERT, ChangeKind.UPDATE})

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table or event.kind not in self.kinds:
            return False
        if self.column is None:
            return True
        return event.new.get(self.column) in self.values


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]
StatusCallback = Callable[[ChannelStatus, Exception | None], None]


@dataclass(eq=False)
class ChannelHandle:
    """Live subscription scope returned by ChangeFeed.subscribe."""

    name: str
    filters: tuple[ChangeFilter, ...]
    handler: ChangeHandler
    on_status: StatusCallback | None = None
    closed: bool = False
    _feed: "ChangeFeed | None" = field(default=None, repr=False)

    def close(self) -> None:
        """Detach from the feed. Calling it again is a no-op."""
        if self.closed:
            return
        self.closed = True
        if self._feed is not None:
            self._feed._detach(self)
        self._notify(ChannelStatus.CLOSED, None)

    def wants(self, event: ChangeEvent) -> bool:
        return not self.closed and any(f.matches(event) for f in self.filters)

    def _notify(self, status: ChannelStatus, error: Exception | None) -> None:
        if self.on_status is not None:
            self.on_status(status, error)


class ChangeFeed:
    """Tracks open channels and fans committed changes out to them."""

    def __init__(self) -> None:
        self._channels: list[ChannelHandle] = []

    async def subscribe(
        self,
        name: str,
        filters: list[ChangeFilter],
        handler: ChangeHandler,
        on_status: StatusCallback | None = None,
    ) -> ChannelHandle:
        handle = ChannelHandle(
            name=name,
            filters=tuple(filters),
            handler=handler,
            on_status=on_status,
            _feed=self,
        )
        self._channels.append(handle)
        logger.debug("Channel subscribed: %s (total=%s)", name, self.total_channels)
        handle._notify(ChannelStatus.SUBSCRIBED, None)
        return handle

    def unsubscribe(self, handle: ChannelHandle) -> None:
        handle.close()

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver event to every matching channel. Returns the delivery count."""
        delivered = 0
        for handle in list(self._channels):
            if not handle.wants(event):
                continue
            try:
                await handle.handler(event)
                delivered += 1
            except Exception:  # noqa: BLE001
                logger.exception("Change handler failed on channel %s", handle.name)
        return delivered

    def fail(self, handle: ChannelHandle, error: Exception) -> None:
        """Report a transport drop: the channel is detached and told why."""
        if handle.closed:
            return
        handle.closed = True
        self._detach(handle)
        handle._notify(ChannelStatus.CHANNEL_ERROR, error)

    def _detach(self, handle: ChannelHandle) -> None:
        if handle in self._channels:
            self._channels.remove(handle)
        logger.debug("Channel removed: %s (total=%s)", handle.name, self.total_channels)

    @property
    def total_channels(self) -> int:
        return len(self._channels)

    def channel_names(self) -> list[str]:
        return [c.name for c in self._channels]
