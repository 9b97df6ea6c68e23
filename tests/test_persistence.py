"""Tests for storage backends and the state persistence adapter."""

import json
import logging

from leadflow.core.persistence import (
    STATE_VERSION,
    InMemoryStorage,
    JsonFileStorage,
    StatePersistenceAdapter,
)
from leadflow.schemas.filters import FilterRule, FilterSpec
from leadflow.schemas.state import (
    ErrorInfo,
    LogEntry,
    RunState,
    RunStatus,
    StepState,
    StepStatus,
)
from leadflow.schemas.steps import StepDefinition


# -- helpers -----------------------------------------------------------------


def _state() -> RunState:
    return RunState(
        current_step_index=1,
        status=RunStatus.ERROR,
        step_status={
            "companyFit": StepStatus(status=StepState.COMPLETE, message="7 of 10 rows remain"),
            "leadScore": StepStatus(status=StepState.ERROR, message="boom"),
        },
        processed_rows=[{"id": 1, "relevanceTag": "", "__row_key": "id:1"}],
        error=ErrorInfo(step_id="leadScore", message="boom", batch_index=2),
        total_steps=2,
    )


def _steps() -> list[StepDefinition]:
    return [
        StepDefinition(
            id="companyFit",
            config={"prompt": "Is {company} a SaaS company?"},
            filter=FilterSpec(
                rules=[FilterRule(field="headcount", operator="lessThan", value="50")],
                tag_prefix="small",
            ),
        ),
        StepDefinition(id="leadScore", batch_size=5),
    ]


class RaisingStorage:
    def save(self, key, value):
        raise OSError("disk full")

    def load(self, key):
        raise OSError("unreadable")

    def remove(self, key):
        raise OSError("locked")


class RejectingStorage(InMemoryStorage):
    def save(self, key, value):
        return False


# -- backends ----------------------------------------------------------------


class TestInMemoryStorage:
    def test_round_trip(self):
        storage = InMemoryStorage()
        assert storage.save("k", {"a": [1, 2]})
        assert storage.load("k") == {"a": [1, 2]}
        assert "k" in storage

    def test_values_are_copied(self):
        storage = InMemoryStorage()
        value = {"a": 1}
        storage.save("k", value)
        value["a"] = 2
        assert storage.load("k") == {"a": 1}

    def test_missing_and_remove(self):
        storage = InMemoryStorage()
        assert storage.load("nope") is None
        storage.save("k", 1)
        assert storage.remove("k")
        assert "k" not in storage


class TestJsonFileStorage:
    def test_round_trip(self, tmp_path):
        storage = JsonFileStorage(tmp_path / "state")
        assert storage.save("run_1", {"rows": [{"id": 1}]})
        assert storage.load("run_1") == {"rows": [{"id": 1}]}
        assert storage.list_keys() == ["run_1"]

    def test_key_is_sanitized(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.save("../evil key", {"x": 1})
        assert (tmp_path / "evilkey.json").exists()

    def test_unusable_key_fails_softly(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        assert storage.save("///", {"x": 1}) is False
        assert storage.load("///") is None

    def test_corrupt_file_loads_as_none(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json")
        assert JsonFileStorage(tmp_path).load("broken") is None

    def test_remove(self, tmp_path):
        storage = JsonFileStorage(tmp_path)
        storage.save("k", 1)
        assert storage.remove("k")
        assert storage.load("k") is None
        assert storage.remove("k")

    def test_list_keys_without_directory(self, tmp_path):
        assert JsonFileStorage(tmp_path / "missing").list_keys() == []


# -- adapter -----------------------------------------------------------------


class TestStatePersistenceAdapter:
    def test_save_and_load(self):
        adapter = StatePersistenceAdapter(InMemoryStorage(), "run")
        state, steps = _state(), _steps()

        assert adapter.save(state, steps, {"steps": {}, "substeps": []})
        loaded = adapter.load()

        assert loaded["state"] == state
        assert loaded["steps"] == steps
        assert loaded["steps"][0].filter.tag_prefix == "small"
        assert loaded["analytics"] == {"steps": {}, "substeps": []}
        assert loaded["logs"] == []

    def test_file_backend_round_trip(self, tmp_path):
        adapter = StatePersistenceAdapter(JsonFileStorage(tmp_path), "run")
        adapter.save(_state(), _steps())

        raw = json.loads((tmp_path / "run.json").read_text())
        assert raw["version"] == STATE_VERSION
        assert raw["steps"][0]["filter"]["tagPrefix"] == "small"
        assert adapter.load()["state"] == _state()

    def test_logs_saved_under_own_key(self):
        storage = InMemoryStorage()
        adapter = StatePersistenceAdapter(storage, "run")
        entries = [LogEntry(timestamp="2026-01-01T00:00:00", message="Starting step 1/2")]

        adapter.save(_state())
        assert adapter.save_logs(entries)

        assert "run_logs" in storage
        assert adapter.load()["logs"] == entries

    def test_load_nothing(self):
        assert StatePersistenceAdapter(InMemoryStorage(), "run").load() is None

    def test_version_mismatch_ignored(self):
        storage = InMemoryStorage()
        storage.save("run", {"version": 999, "state": {}})
        assert StatePersistenceAdapter(storage, "run").load() is None

    def test_invalid_state_ignored(self):
        storage = InMemoryStorage()
        storage.save("run", {"version": STATE_VERSION, "state": {"current_step_index": -3}})
        assert StatePersistenceAdapter(storage, "run").load() is None

    def test_raising_storage_is_logged_not_raised(self, caplog):
        adapter = StatePersistenceAdapter(RaisingStorage(), "run")

        with caplog.at_level(logging.WARNING):
            assert adapter.save(_state()) is False
            assert adapter.load() is None
            assert adapter.clear() is False

        assert adapter.failures == 4
        assert "Storage save failed" in caplog.text

    def test_rejected_payload_counts_failure(self, caplog):
        adapter = StatePersistenceAdapter(RejectingStorage(), "run")

        with caplog.at_level(logging.WARNING):
            assert adapter.save(_state()) is False

        assert adapter.failures == 1
        assert "Storage rejected payload" in caplog.text

    def test_clear(self):
        storage = InMemoryStorage()
        adapter = StatePersistenceAdapter(storage, "run")
        adapter.save(_state())
        adapter.save_logs([])

        assert adapter.clear()
        assert adapter.load() is None
        assert "run_logs" not in storage
