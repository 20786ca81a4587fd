"""Live change subscriptions scoped to a user's connection set.

One manager per watched entity type. For a signed-in user it keeps exactly one
channel open covering the user's trusted connections, maps each change event to
a domain record kept in `records` (keyed by source user id) and runs derived
effects at most once per triggering transition.

Subclasses provide `build_filters`, `source_user_id` and `handle_event`.
"""

from __future__ import annotations

import logging
from typing import Generic, Hashable, Iterable, TypeVar

from famguard.core.realtime import ChangeEvent, ChangeFilter, ChannelHandle, ChannelStatus
from famguard.services.backend import BackendError, SafetyBackend

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class RealtimeSyncManager(Generic[RecordT]):
    channel_prefix = "sync"

    def __init__(self, backend: SafetyBackend) -> None:
        self._backend = backend
        self.user_id: str | None = None
        self.records: dict[str, RecordT] = {}
        self._channel: ChannelHandle | None = None
        self._generation = 0
        self._scope: frozenset[str] = frozenset()
        self._target: frozenset[str] = frozenset()
        self._intentional_close = False
        self._rebuilding = False
        self._fired: set[Hashable] = set()

    # ---------- Hooks ----------

    def build_filters(self, connection_ids: frozenset[str]) -> list[ChangeFilter]:
        raise NotImplementedError

    def source_user_id(self, event: ChangeEvent) -> str | None:
        """The user an event is about, or None when it is not user-scoped."""
        raise NotImplementedError

    async def handle_event(self, event: ChangeEvent) -> None:
        raise NotImplementedError

    async def refresh(self) -> None:
        """Reload state for the whole scope. No-op by default."""

    # ---------- State ----------

    @property
    def connection_ids(self) -> frozenset[str]:
        return self._scope

    @property
    def channel(self) -> ChannelHandle | None:
        return self._channel

    @property
    def is_active(self) -> bool:
        return self._channel is not None and not self._channel.closed

    @property
    def channel_name(self) -> str:
        return f"{self.channel_prefix}:{self.user_id}"

    # ---------- Lifecycle ----------

    async def start(self, user_id: str, connection_ids: Iterable[str] | None = None) -> None:
        """Sign-in: watch `connection_ids`, or the user's current connections when omitted."""
        if self.user_id is not None and self.user_id != user_id:
            self.stop()
        self.user_id = user_id
        if connection_ids is None:
            try:
                connection_ids = await self._backend.get_connected_user_ids(user_id)
            except BackendError as exc:
                logger.error("Error getting connected user IDs for %s: %s", user_id, exc)
                connection_ids = []
        await self.set_connections(connection_ids)
        await self.refresh()

    async def set_connections(self, connection_ids: Iterable[str]) -> None:
        """Point the channel at a new connection set.

        The latest call wins: a call made while a rebuild is in flight only
        updates the target, and the running rebuild loop picks it up.
        """
        self._target = frozenset(cid for cid in connection_ids if cid and cid != self.user_id)
        if self.user_id is None:
            return
        if self._rebuilding:
            logger.debug("Rebuild in flight for %s; target updated", self.channel_name)
            return

        self._rebuilding = True
        try:
            while self._needs_rebuild():
                if not await self._rebuild(self._target):
                    break
        finally:
            self._rebuilding = False

    def stop(self) -> None:
        """Sign-out or disposal. Safe to call repeatedly.

        A subscribe still in flight is invalidated; its channel is closed as
        soon as it arrives.
        """
        self._generation += 1
        self._close_channel()
        self._scope = frozenset()
        self._target = frozenset()
        self.records.clear()
        self._fired.clear()
        self.user_id = None

    def _needs_rebuild(self) -> bool:
        if self._target != self._scope:
            return True
        # Same set, but the previous channel dropped
        return bool(self._target) and not self.is_active

    async def _rebuild(self, target: frozenset[str]) -> bool:
        self._close_channel()
        self._scope = target
        for uid in list(self.records):
            if uid not in target:
                del self.records[uid]

        if not target:
            logger.debug("No connections to watch for %s; channel left closed", self.channel_name)
            return True

        self._generation += 1
        generation = self._generation
        user_id = self.user_id
        name = self.channel_name
        try:
            channel = await self._backend.subscribe_to_changes(
                name,
                self.build_filters(target),
                self._on_event,
                lambda status, error: self._on_status(generation, status, error),
            )
        except BackendError as exc:
            logger.error("Error subscribing %s: %s", name, exc)
            return False

        if generation != self._generation or user_id != self.user_id or target != self._target:
            # Superseded while subscribing
            logger.debug("Discarding stale channel %s", name)
            self._discard(channel)
            return True
        self._channel = channel
        logger.info("Watching %s connection(s) on %s", len(target), name)
        return True

    def _close_channel(self) -> None:
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        self._discard(channel)

    def _discard(self, channel: ChannelHandle) -> None:
        self._intentional_close = True
        try:
            self._backend.unsubscribe(channel)
        finally:
            self._intentional_close = False

    def _on_status(self, generation: int, status: ChannelStatus, error: Exception | None) -> None:
        if status is ChannelStatus.SUBSCRIBED:
            logger.debug("Subscribed %s", self.channel_name)
            return
        if self._intentional_close or generation != self._generation:
            logger.debug("Channel %s closed (%s)", self.channel_name, status.value)
            return
        if status is ChannelStatus.CHANNEL_ERROR:
            logger.error("Realtime channel %s dropped: %s", self.channel_name, error)
        else:
            logger.warning("Realtime channel %s closed unexpectedly", self.channel_name)

    # ---------- Dispatch ----------

    def is_self_event(self, event: ChangeEvent) -> bool:
        source = self.source_user_id(event)
        return source is not None and source == self.user_id

    async def _on_event(self, event: ChangeEvent) -> None:
        if self._intentional_close:
            return
        await self.dispatch(event)

    async def dispatch(self, event: ChangeEvent) -> None:
        if self.user_id is None:
            return
        if self.is_self_event(event):
            logger.debug("Ignoring own %s change on %s", event.kind.value, event.table)
            return
        source = self.source_user_id(event)
        if source is not None and source not in self._scope:
            return
        await self.handle_event(event)

    def fire_once(self, key: Hashable) -> bool:
        """True the first time `key` is seen in this session."""
        if key in self._fired:
            return False
        self._fired.add(key)
        return True
