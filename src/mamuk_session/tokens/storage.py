"""Durable key/value storage backends.

Pattern: Write-Through Key/Value Store
---------------------------------------
The session subsystem persists a handful of string values: the access token,
the refresh token, the computed expiry, and a JSON snapshot of the session.
Two backends implement the same three-method protocol:

  - ``MemoryStorage`` keeps values in a dict.  It is the fallback when no
    durable location is configured and the backend used by the tests.
  - ``JsonFileStorage`` keeps every value in one JSON document on disk and
    rewrites the document on every mutation, so a process restart sees
    exactly what was last written.

Callers never touch a backend for credential keys directly; they go through
``CredentialStore`` so that the in-memory view and the persisted view cannot
drift apart.
"""

from __future__ import annotations

import json
import logging
import os
import pathlib
import tempfile
from typing import Protocol

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String-keyed persistence used by the credential store and session state."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage.  Nothing survives a restart."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStorage:
    """Storage backed by a single JSON document.

    The file is read once at construction.  Every ``set``/``remove`` rewrites
    it atomically (temp file + ``os.replace``).  A corrupt or unreadable file
    is logged and treated as empty rather than aborting start-up.
    """

    def __init__(self, path: str | pathlib.Path) -> None:
        self._path = pathlib.Path(path).expanduser()
        self._data: dict[str, str] = self._load()

    @property
    def path(self) -> pathlib.Path:
        return self._path

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value
        self._flush()

    def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    # -- private helpers -----------------------------------------------------

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable storage file %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring storage file %s: top level is not an object", self._path)
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".session-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, indent=2, sort_keys=True)
            os.replace(tmp_name, self._path)
        except BaseException:
            pathlib.Path(tmp_name).unlink(missing_ok=True)
            raise
