"""Local tracking config store tests."""

from datetime import datetime, timezone

from famguard.services.config_store import (
    LAST_INSERT_KEY_PREFIX,
    InMemoryConfigStore,
    JsonFileConfigStore,
    TrackingConfig,
)


def test_empty_store_is_not_configured():
    config = InMemoryConfigStore().read_tracking_config()
    assert config.user_id is None
    assert config.sharing_enabled is False
    assert config.is_complete is False


def test_settings_write_visible_to_next_read(tmp_path):
    """A settings change is read back by a second store instance on the same file."""
    path = tmp_path / "tracking.json"
    settings_side = JsonFileConfigStore(path)
    capture_side = JsonFileConfigStore(path)

    settings_side.write_tracking_config(TrackingConfig("u1", "g1", sharing_enabled=True, update_frequency_minutes=15))
    assert capture_side.read_tracking_config() == TrackingConfig("u1", "g1", True, 15)

    settings_side.set_sharing_enabled(False)
    assert capture_side.read_tracking_config().sharing_enabled is False


def test_last_insert_timestamp_roundtrip_is_per_user():
    store = InMemoryConfigStore()
    ts = datetime(2026, 10, 19, 8, 30, tzinfo=timezone.utc)
    store.write_last_insert_timestamp("u1", ts)

    assert store.read_last_insert_timestamp("u1") == ts
    assert store.read_last_insert_timestamp("u2") is None


def test_unreadable_last_insert_timestamp_is_ignored():
    store = InMemoryConfigStore({LAST_INSERT_KEY_PREFIX + "u1": "yesterday"})
    assert store.read_last_insert_timestamp("u1") is None


def test_clear_keeps_last_insert_timestamps():
    store = InMemoryConfigStore()
    store.write_tracking_config(TrackingConfig("u1", "g1", True))
    store.write_last_insert_timestamp("u1", datetime(2026, 1, 1, tzinfo=timezone.utc))

    store.clear_tracking_config()

    assert store.read_tracking_config().is_complete is False
    assert store.read_last_insert_timestamp("u1") is not None


def test_corrupted_file_is_backed_up(tmp_path):
    path = tmp_path / "tracking.json"
    path.write_text("{not json", encoding="utf-8")

    config = JsonFileConfigStore(path).read_tracking_config()

    assert config.is_complete is False
    assert (tmp_path / "tracking.json.broken").read_text(encoding="utf-8") == "{not json"
