"""
MockPrep — Progress Store

Durable key-value persistence of ProgressSnapshot, keyed by session id.
Every put is a full overwrite (last write wins); there is no merge and no
cross-key transaction.

  JsonFileProgressStore — one JSON document per session on local disk
  InMemoryProgressStore — process-local dict, for tests and demo mode
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

from ..core.errors import PersistenceError
from ..core.models import ProgressSnapshot

logger = logging.getLogger("mockprep.progress")

KEY_PREFIX = "interview-progress-"


def progress_key(session_id: str) -> str:
    return f"{KEY_PREFIX}{session_id}"


class JsonFileProgressStore:
    """Snapshots as `<dir>/interview-progress-<session_id>.json`, written atomically."""

    def __init__(self, directory: str | os.PathLike) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, session_id: str) -> Path:
        # percent-encoding keeps distinct ids in distinct files
        return self._dir / f"{progress_key(quote(session_id, safe=''))}.json"

    def get(self, session_id: str) -> Optional[ProgressSnapshot]:
        path = self._path(session_id)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Could not read {path}: {e}") from e

        try:
            return ProgressSnapshot.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            raise PersistenceError(f"Corrupt snapshot {path}: {e}") from e

    def put(self, session_id: str, snapshot: ProgressSnapshot) -> None:
        path = self._path(session_id)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self._dir, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(snapshot.to_dict(), fh)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise PersistenceError(f"Could not write {path}: {e}") from e
        logger.debug(f"[{session_id}] Snapshot written to {path}")

    def delete(self, session_id: str) -> None:
        path = self._path(session_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            raise PersistenceError(f"Could not delete {path}: {e}") from e
        logger.debug(f"[{session_id}] Snapshot deleted")


class InMemoryProgressStore:
    """Stores serialised copies so later in-memory mutation never leaks into the store."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}

    def get(self, session_id: str) -> Optional[ProgressSnapshot]:
        raw = self._data.get(progress_key(session_id))
        return ProgressSnapshot.from_dict(raw) if raw is not None else None

    def put(self, session_id: str, snapshot: ProgressSnapshot) -> None:
        self._data[progress_key(session_id)] = json.loads(json.dumps(snapshot.to_dict()))

    def delete(self, session_id: str) -> None:
        self._data.pop(progress_key(session_id), None)

    def __contains__(self, session_id: str) -> bool:
        return progress_key(session_id) in self._data

    def __len__(self) -> int:
        return len(self._data)
