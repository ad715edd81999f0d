"""
JSON File Storage Implementation

DESIGN DECISION: A single JSON document on disk is enough for the
pipeline's state (a few short conversation windows, hashes and the device
id). It survives app relaunches, which is what keeps the instruction hash
from needlessly resetting context.

TRADEOFFS:
- Whole-file rewrite on every set (fine for a handful of keys)
- Writes go through a temp file and an atomic rename, so a crash leaves
  either the old or the new document
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from finaudit.services.storage.interface import (
    KeyValueStore,
    SerializationError,
    StorageError,
)


class JsonFileKeyValueStore(KeyValueStore):
    """Key-value store persisted as one JSON object in a file."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()
        self._cache: Optional[dict[str, Any]] = None

    @property
    def path(self) -> Path:
        return self._path

    async def get(self, key: str) -> Optional[Any]:
        async with self._lock:
            data = self._load()
            return data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            data = dict(self._load())
            data[key] = value
            self._write(data)
            self._cache = data

    async def delete(self, key: str) -> None:
        async with self._lock:
            data = dict(self._load())
            if key in data:
                del data[key]
                self._write(data)
                self._cache = data

    def _load(self) -> dict[str, Any]:
        if self._cache is not None:
            return self._cache
        if not self._path.exists():
            self._cache = {}
            return self._cache
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise SerializationError(f"State file {self._path} is not valid JSON: {e}")
        except OSError as e:
            raise StorageError(f"Failed to read state file {self._path}: {e}")
        if not isinstance(data, dict):
            raise SerializationError(f"State file {self._path} does not hold a JSON object")
        self._cache = data
        return data

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=1),
        reraise=True,
    )
    def _write_atomic(self, payload: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_name, self._path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _write(self, data: dict[str, Any]) -> None:
        try:
            payload = json.dumps(data, indent=2, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Value is not JSON-serializable: {e}")
        try:
            self._write_atomic(payload)
        except OSError as e:
            raise StorageError(f"Failed to write state file {self._path}: {e}")
