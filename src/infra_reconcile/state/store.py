"""File-backed state store with per-record locking."""

import fcntl
import json
import os
import threading
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from infra_reconcile.state.models import STATE_VERSION, StateFile, StateRecord, utcnow
from infra_reconcile.utils.errors import StateError, StateLockError, StateNotFoundError
from infra_reconcile.utils.logging import get_logger

logger = get_logger(__name__)


class StateStore:
    """Persists last-applied resource records for future diffs.

    Records are held in memory and the whole file is rewritten on every
    ``put``/``delete``. A write returns only after the file has been flushed,
    fsynced and atomically renamed into place.
    """

    def __init__(
        self,
        state_path: str,
        project: str = "default",
        region: Optional[str] = None,
        lock_timeout: float = 30
    ):
        """
        Initialize StateStore.

        Args:
            state_path: Path to the state file
            project: Project name written into a new state file
            region: Provider region written into the state file
            lock_timeout: Seconds to wait for the file lock when used as a
                context manager
        """
        self.state_path = Path(state_path)
        self.project = project
        self.region = region
        self.lock_timeout = lock_timeout
        self._state: Optional[StateFile] = None
        self._lock_fd: Optional[int] = None

        self._write_lock = threading.Lock()
        self._locks_guard = threading.Lock()
        self._record_locks: Dict[str, threading.Lock] = {}

    def exists(self) -> bool:
        """Check if state file exists."""
        return self.state_path.exists()

    def load(self, required: bool = False) -> StateFile:
        """
        Load state from file.

        Args:
            required: Raise instead of starting empty when the file is missing

        Returns:
            StateFile object

        Raises:
            StateNotFoundError: If required and the state file does not exist
            StateError: If state file is corrupted or invalid
        """
        if not self.state_path.exists():
            if required:
                raise StateNotFoundError(f"State file not found: {self.state_path}")
            self._state = StateFile(project=self.project, region=self.region)
            return self._state

        try:
            with open(self.state_path, "r") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateError(f"Failed to parse state file {self.state_path}: {e}", cause=e)
        except OSError as e:
            raise StateError(f"Failed to read state file {self.state_path}: {e}", cause=e)

        if data.get("version") != STATE_VERSION:
            raise StateError(
                f"Unsupported state file version {data.get('version')!r} in {self.state_path}"
            )

        try:
            self._state = StateFile.model_validate(data)
        except ValidationError as e:
            raise StateError(f"Invalid state file {self.state_path}: {e}", cause=e)

        logger.debug(f"Loaded {len(self._state.records)} records from {self.state_path}")
        return self._state

    @property
    def state(self) -> StateFile:
        if self._state is None:
            self.load()
        return self._state

    def get(self, identifier: str) -> Optional[StateRecord]:
        """
        Get the last-applied record for a resource.

        Args:
            identifier: Resource identifier

        Returns:
            Copy of the record or None if absent
        """
        with self._record_lock(identifier):
            record = self.state.records.get(identifier)
            return record.model_copy(deep=True) if record else None

    def put(self, identifier: str, record: StateRecord) -> None:
        """
        Record a successfully applied resource.

        Args:
            identifier: Resource identifier
            record: Record to persist

        Raises:
            StateError: If the record cannot be persisted
        """
        if record.identifier != identifier:
            raise StateError(
                f"Record identifier '{record.identifier}' does not match '{identifier}'"
            )

        with self._record_lock(identifier):
            with self._write_lock:
                previous = self.state.records.get(identifier)
                self.state.records[identifier] = record.model_copy(deep=True)
                try:
                    self._flush()
                except StateError:
                    if previous is None:
                        self.state.records.pop(identifier, None)
                    else:
                        self.state.records[identifier] = previous
                    raise

        logger.debug(f"Persisted state record: {identifier}")

    def delete(self, identifier: str) -> Optional[StateRecord]:
        """
        Forget a resource after it has been destroyed.

        Args:
            identifier: Resource identifier

        Returns:
            Removed record or None if it was not tracked
        """
        with self._record_lock(identifier):
            with self._write_lock:
                removed = self.state.records.pop(identifier, None)
                if removed is None:
                    return None
                try:
                    self._flush()
                except StateError:
                    self.state.records[identifier] = removed
                    raise

        logger.debug(f"Removed state record: {identifier}")
        return removed

    def list(self) -> List[StateRecord]:
        """All records in first-applied order."""
        with self._write_lock:
            return [record.model_copy(deep=True) for record in self.state.records.values()]

    def get_outputs(self) -> Dict[str, Any]:
        """Resolved template outputs from the last apply."""
        return dict(self.state.outputs)

    def set_outputs(self, outputs: Dict[str, Any]) -> None:
        """Replace the recorded template outputs."""
        with self._write_lock:
            self.state.outputs = dict(outputs)
            self._flush()

    def _record_lock(self, identifier: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._record_locks.get(identifier)
            if lock is None:
                lock = threading.Lock()
                self._record_locks[identifier] = lock
            return lock

    def _flush(self) -> None:
        """Write the state file durably. Caller holds the write lock."""
        state = self.state
        state.serial += 1
        state.timestamp = utcnow()
        if self.region:
            state.region = self.region

        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.state_path.with_suffix(self.state_path.suffix + ".tmp")

        try:
            with open(temp_path, "w") as f:
                f.write(state.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())

            temp_path.replace(self.state_path)

            dir_fd = os.open(str(self.state_path.parent), os.O_RDONLY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError as e:
            state.serial -= 1
            raise StateError(f"Failed to save state file {self.state_path}: {e}", cause=e)

    def lock(self, timeout: float = 30) -> None:
        """
        Acquire an exclusive lock so only one run uses the state file.

        Args:
            timeout: Lock timeout in seconds

        Raises:
            StateLockError: If lock cannot be acquired
        """
        lock_path = self.state_path.with_suffix(self.state_path.suffix + ".lock")
        lock_path.parent.mkdir(parents=True, exist_ok=True)

        fd = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        start_time = time.monotonic()
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start_time > timeout:
                    os.close(fd)
                    raise StateLockError(
                        f"Failed to acquire lock on {self.state_path} after {timeout}s",
                        suggestions=["Check whether another run is in progress"]
                    )
                time.sleep(0.1)

        self._lock_fd = fd

    def unlock(self) -> None:
        """Release lock on state file."""
        if self._lock_fd is not None:
            try:
                fcntl.flock(self._lock_fd, fcntl.LOCK_UN)
                os.close(self._lock_fd)
            finally:
                self._lock_fd = None

    def __enter__(self):
        """Context manager entry - acquire lock and load state."""
        self.lock(self.lock_timeout)
        try:
            self.load()
        except StateError:
            self.unlock()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - release lock."""
        self.unlock()
