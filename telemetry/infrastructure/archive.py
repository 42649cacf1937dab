"""Sinks that receive activity records before they are removed from the store."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Protocol, Sequence

from telemetry.domain.entities import ActivityRecord
from telemetry.utils import utcnow
from telemetry.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)


class ArchiveSink(Protocol):
    """Destination for archived records.

    ``write`` must raise when the batch was not durably accepted; the caller
    only deletes records from the store after a successful write.
    """

    def start_run(self) -> object: ...

    def write(self, records: Sequence[ActivityRecord]) -> None: ...


def serialize_activity_record(record: ActivityRecord) -> dict[str, object]:
    """Return a JSON-serializable representation of ``record``."""

    return to_jsonable(record)


class JsonLinesArchiveSink:
    """Append archived records to ``activities-<run>.jsonl`` under ``directory``."""

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)
        self._current_file: Path | None = None

    @property
    def current_file(self) -> Path | None:
        return self._current_file

    def start_run(self) -> Path:
        self._directory.mkdir(parents=True, exist_ok=True)
        stamp = utcnow().strftime("%Y%m%dT%H%M%S%fZ")
        self._current_file = self._directory / f"activities-{stamp}.jsonl"
        return self._current_file

    def write(self, records: Sequence[ActivityRecord]) -> None:
        if not records:
            return
        target = self._current_file or self.start_run()
        lines = [
            json.dumps(serialize_activity_record(record), ensure_ascii=False, sort_keys=True)
            for record in records
        ]
        with target.open("a", encoding="utf-8") as handle:
            handle.write("\n".join(lines) + "\n")
        logger.debug("Archived %s activity records into %s", len(records), target)


__all__ = [
    "ArchiveSink",
    "JsonLinesArchiveSink",
    "serialize_activity_record",
]
