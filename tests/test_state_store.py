"""
Tests for StateStore persistence.
"""

import json

from movecatcher.state.state_store import StateStore


class TestStateStore:
    """Atomic JSON save/load."""

    def test_missing_file_loads_empty(self, tmp_path):
        store = StateStore("EURUSD", str(tmp_path))
        assert store.load() == {}

    def test_save_then_load(self, tmp_path):
        store = StateStore("EURUSD", str(tmp_path))
        store.save({"version": 1, "systems": {"A": {"system": "A"}}})

        assert store.load() == {"version": 1, "systems": {"A": {"system": "A"}}}
        assert store.path.name == "movecatcher_state_EURUSD.json"
        assert not store.tmp.exists()

    def test_symbol_is_made_path_safe(self, tmp_path):
        store = StateStore("EUR/USD:x", str(tmp_path))
        assert store.path.name == "movecatcher_state_EUR_USD_x.json"

    def test_creates_state_dir(self, tmp_path):
        target = tmp_path / "nested" / "dir"
        store = StateStore("EURUSD", str(target))
        store.save({"a": 1})
        assert target.is_dir()

    def test_corrupt_file_loads_empty(self, tmp_path, caplog):
        store = StateStore("EURUSD", str(tmp_path))
        store.path.write_text("{not json")

        assert store.load() == {}
        assert "state_load_error" in caplog.text

    def test_non_dict_loads_empty(self, tmp_path):
        store = StateStore("EURUSD", str(tmp_path))
        store.path.write_text(json.dumps([1, 2, 3]))
        assert store.load() == {}

    def test_unserializable_data_is_logged(self, tmp_path, caplog):
        store = StateStore("EURUSD", str(tmp_path))
        store.save({"bad": object()})

        assert "state_save_error" in caplog.text
        assert store.load() == {}
