"""JSON snapshot files backing the persistent queue store."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, List

from infrastructure.errors import TransientError


class JsonRecordRepository:
    """One JSON array per file: queue entries in one, stations in another."""

    def __init__(self, file_path: str, *, logger: Any) -> None:
        self._path = Path(file_path)
        self._logger = logger

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> List[dict]:
        """Read the snapshot; a missing or unreadable file yields an empty store."""

        if not self._path.exists():
            self._logger.debug("No snapshot at %s, queue store starts empty", self._path)
            return []
        try:
            with self._path.open('r', encoding='utf-8') as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            self._logger.error("Queue snapshot %s unreadable: %s", self._path, exc)
            return []
        if not isinstance(payload, list):
            self._logger.warning(
                "Ignoring queue snapshot %s: top level is %s, not a list",
                self._path,
                type(payload).__name__,
            )
            return []
        self._logger.debug("Restored %s rows from %s", len(payload), self._path)
        return payload

    def save(self, records: Iterable[dict]) -> None:
        """Write through a sibling ``.tmp`` file and rename over the snapshot.

        Raises:
            TransientError: the snapshot could not be written.
        """

        staging = self._path.with_suffix(self._path.suffix + '.tmp')
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with staging.open('w', encoding='utf-8') as handle:
                json.dump(list(records), handle, indent=2, ensure_ascii=False)
            staging.replace(self._path)
        except OSError as exc:
            self._logger.error("Queue snapshot %s not written: %s", self._path, exc)
            raise TransientError(f"Could not write {self._path}: {exc}") from exc
        self._logger.debug("Queue snapshot written to %s", self._path)
