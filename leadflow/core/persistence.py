"""
State persistence for the leadflow engine.

Provides a small key-value ``Storage`` protocol with in-memory and
JSON-file backends, and the adapter the orchestrator uses to save and
rehydrate run state. Persistence failures are logged, never raised: a run
must keep going when storage is full or unavailable.
"""

from __future__ import annotations

import json
import os
import time
from pathlib import Path
from typing import Any, Optional, Protocol, Union, runtime_checkable

from ..schemas.state import LogEntry, RunState
from ..schemas.steps import StepDefinition
from ..utils.logger import get_logger
from .exceptions import PersistenceError

logger = get_logger(__name__)

STATE_VERSION = 1


@runtime_checkable
class Storage(Protocol):
    """Key-value store holding JSON-serializable values."""

    def save(self, key: str, value: Any) -> bool: ...

    def load(self, key: str) -> Any: ...

    def remove(self, key: str) -> bool: ...


class InMemoryStorage:
    """Dict-backed storage.

    Values are round-tripped through JSON so anything that would not
    survive a real backend fails here too.
    """

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def save(self, key: str, value: Any) -> bool:
        self._data[key] = json.dumps(value, default=str)
        return True

    def load(self, key: str) -> Any:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def remove(self, key: str) -> bool:
        self._data.pop(key, None)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._data


class JsonFileStorage:
    """One JSON file per key inside *directory*."""

    def __init__(self, directory: Union[str, Path]):
        """
        Initialize file storage.

        Args:
            directory: Folder for state files (created on first save)
        """
        self.directory = Path(directory)

    def _get_path(self, key: str) -> Path:
        # Create safe filename from key
        safe_key = "".join(c for c in key if c.isalnum() or c in ('-', '_'))
        if not safe_key:
            raise PersistenceError("Storage key has no usable characters", key=key)
        return self.directory / f"{safe_key}.json"

    def save(self, key: str, value: Any) -> bool:
        try:
            path = self._get_path(key)
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            with open(tmp_path, 'w') as f:
                json.dump(value, f, indent=2, default=str)
            os.replace(tmp_path, path)
            logger.debug(f"State saved: {path}")
            return True

        except (OSError, TypeError, ValueError, PersistenceError) as e:
            logger.error(f"Failed to save state for {key}: {e}")
            return False

    def load(self, key: str) -> Any:
        try:
            path = self._get_path(key)
            if not path.exists():
                return None
            with open(path, 'r') as f:
                return json.load(f)

        except (OSError, ValueError, PersistenceError) as e:
            logger.error(f"Failed to load state for {key}: {e}")
            return None

    def remove(self, key: str) -> bool:
        try:
            path = self._get_path(key)
            if path.exists():
                os.remove(path)
                logger.debug(f"Removed state file: {path}")
            return True

        except (OSError, PersistenceError) as e:
            logger.error(f"Failed to remove state for {key}: {e}")
            return False

    def list_keys(self) -> list[str]:
        """Keys with a state file on disk."""
        if not self.directory.exists():
            return []
        return sorted(p.stem for p in self.directory.glob("*.json"))


class StatePersistenceAdapter:
    """
    Saves and rehydrates orchestrator state through a ``Storage``.

    Every method reports failure as a return value; storage exceptions are
    wrapped in ``PersistenceError`` and logged.
    """

    def __init__(self, storage: Storage, key: str):
        self.storage = storage
        self.key = key
        self.logs_key = f"{key}_logs"
        self.failures = 0

    def _call(self, action: str, fn, *args) -> tuple[bool, Any]:
        """Run a storage call; returns (succeeded, result)."""
        try:
            return True, fn(*args)
        except Exception as exc:
            err = PersistenceError(f"Storage {action} failed: {exc}", key=self.key)
            err.__cause__ = exc
            self.failures += 1
            logger.warning("%s", err)
            return False, None

    def save(
        self,
        state: RunState,
        steps: Optional[list[StepDefinition]] = None,
        analytics: Optional[dict[str, Any]] = None,
    ) -> bool:
        """
        Persist a run snapshot.

        Args:
            state: Current run state
            steps: Pipeline step definitions, so a reload can resume
            analytics: ``RunAnalytics.to_dict()`` including sub-steps

        Returns:
            bool: True if the storage accepted the payload
        """
        payload = {
            'version': STATE_VERSION,
            'timestamp': time.time(),
            'state': state.model_dump(mode="json"),
            'steps': [s.model_dump(mode="json", by_alias=True) for s in steps or []],
            'analytics': analytics or {},
        }
        return self._save(self.key, payload)

    def save_logs(self, entries: list[LogEntry]) -> bool:
        return self._save(self.logs_key, [e.model_dump() for e in entries])

    def _save(self, key: str, payload: Any) -> bool:
        succeeded, accepted = self._call("save", self.storage.save, key, payload)
        if not succeeded:
            return False
        if not accepted:
            # e.g. quota exceeded
            self.failures += 1
            logger.warning("%s", PersistenceError("Storage rejected payload", key=key))
            return False
        return True

    def load(self) -> Optional[dict[str, Any]]:
        """
        Load the saved payload.

        Returns:
            Dict with ``state`` (RunState), ``steps`` (list[StepDefinition]),
            ``analytics`` and ``logs`` (list[LogEntry]); None if nothing
            usable is stored
        """
        _, raw = self._call("load", self.storage.load, self.key)
        if not raw:
            return None
        if not isinstance(raw, dict) or raw.get('version') != STATE_VERSION:
            logger.warning("Ignoring stored run state with unexpected format (key=%s)", self.key)
            return None

        try:
            state = RunState.model_validate(raw['state'])
            steps = [StepDefinition.model_validate(s) for s in raw.get('steps') or []]
        except (KeyError, ValueError) as exc:
            logger.warning("%s", PersistenceError(f"Stored run state is invalid: {exc}", key=self.key))
            return None

        logs: list[LogEntry] = []
        _, raw_logs = self._call("load", self.storage.load, self.logs_key)
        for entry in raw_logs or []:
            try:
                logs.append(LogEntry.model_validate(entry))
            except ValueError:
                continue

        logger.info(
            "Loaded run state: step %d of %d, status %s",
            state.current_step_index, state.total_steps, state.status.value,
        )
        return {
            'state': state,
            'steps': steps,
            'analytics': raw.get('analytics') or {},
            'logs': logs,
            'timestamp': raw.get('timestamp'),
        }

    def clear(self) -> bool:
        """Remove saved state and logs."""
        ok_state, removed_state = self._call("remove", self.storage.remove, self.key)
        ok_logs, removed_logs = self._call("remove", self.storage.remove, self.logs_key)
        return ok_state and ok_logs and bool(removed_state) and bool(removed_logs)
