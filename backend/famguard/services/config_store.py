"""Device-local tracking identity/config store.

The capture task reads its identity (user, family group, sharing flag, history
cadence) and the per-user last-history-insert timestamp from here. User-facing
settings write the same keys, so every read goes back to the backing storage
and a settings change is visible to the very next capture cycle.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from famguard.core.timeutils import from_epoch_ms, to_epoch_ms

logger = logging.getLogger(__name__)

USER_ID_KEY = "location_tracking_user_id"
GROUP_ID_KEY = "location_tracking_family_group_id"
SHARE_LOCATION_KEY = "location_tracking_share_location"
FREQUENCY_KEY = "location_update_frequency_minutes"
LAST_INSERT_KEY_PREFIX = "location_history_last_insert_"

TRACKING_KEYS = (USER_ID_KEY, GROUP_ID_KEY, SHARE_LOCATION_KEY, FREQUENCY_KEY)


@dataclass(frozen=True)
class TrackingConfig:
    user_id: str | None
    group_id: str | None
    sharing_enabled: bool = False
    update_frequency_minutes: int | None = None

    @property
    def is_complete(self) -> bool:
        return bool(self.user_id) and bool(self.group_id)


class LocalConfigStore(Protocol):
    def read_tracking_config(self) -> TrackingConfig: ...

    def write_tracking_config(self, config: TrackingConfig) -> None: ...

    def set_sharing_enabled(self, enabled: bool) -> None: ...

    def clear_tracking_config(self) -> None: ...

    def read_last_insert_timestamp(self, user_id: str) -> datetime | None: ...

    def write_last_insert_timestamp(self, user_id: str, ts: datetime) -> None: ...


class KeyValueConfigStore:
    """Typed tracking accessors over a flat string-keyed mapping."""

    def _load(self) -> dict[str, Any]:
        raise NotImplementedError

    def _save(self, data: dict[str, Any]) -> None:
        raise NotImplementedError

    def read_tracking_config(self) -> TrackingConfig:
        data = self._load()
        frequency = data.get(FREQUENCY_KEY)
        return TrackingConfig(
            user_id=data.get(USER_ID_KEY) or None,
            group_id=data.get(GROUP_ID_KEY) or None,
            sharing_enabled=data.get(SHARE_LOCATION_KEY) is True,
            update_frequency_minutes=int(frequency) if frequency is not None else None,
        )

    def write_tracking_config(self, config: TrackingConfig) -> None:
        data = self._load()
        data[USER_ID_KEY] = config.user_id
        data[GROUP_ID_KEY] = config.group_id
        data[SHARE_LOCATION_KEY] = config.sharing_enabled
        data[FREQUENCY_KEY] = config.update_frequency_minutes
        self._save(data)

    def set_sharing_enabled(self, enabled: bool) -> None:
        data = self._load()
        data[SHARE_LOCATION_KEY] = enabled
        self._save(data)

    def clear_tracking_config(self) -> None:
        data = self._load()
        for key in TRACKING_KEYS:
            data.pop(key, None)
        self._save(data)

    def read_last_insert_timestamp(self, user_id: str) -> datetime | None:
        raw = self._load().get(LAST_INSERT_KEY_PREFIX + user_id)
        if raw is None:
            return None
        try:
            return from_epoch_ms(int(raw))
        except (TypeError, ValueError):
            logger.warning("Ignoring unreadable last-insert timestamp for user %s: %r", user_id, raw)
            return None

    def write_last_insert_timestamp(self, user_id: str, ts: datetime) -> None:
        data = self._load()
        data[LAST_INSERT_KEY_PREFIX + user_id] = to_epoch_ms(ts)
        self._save(data)


class InMemoryConfigStore(KeyValueConfigStore):
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def _load(self) -> dict[str, Any]:
        return dict(self._data)

    def _save(self, data: dict[str, Any]) -> None:
        self._data = dict(data)


class JsonFileConfigStore(KeyValueConfigStore):
    """Store persisted as a single JSON object on disk."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        text = self._path.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            # Corrupted store: keep a backup and start fresh
            backup = self._path.with_suffix(self._path.suffix + ".broken")
            backup.write_text(text, encoding="utf-8")
            logger.warning("Tracking store %s was corrupted; backed up to %s", self._path, backup)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(self._path)
