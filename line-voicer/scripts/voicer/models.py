#!/usr/bin/env python3
from __future__ import annotations

"""Line/batch records and the caller-owned repository that holds them.

Records are immutable snapshots. Every update replaces a whole record keyed
by id, so concurrent line tasks never share mutable state and observers
always receive a consistent view.
"""

import dataclasses
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

STATUS_PENDING = "pending"
STATUS_CONVERTING = "converting"
STATUS_DONE = "done"
STATUS_ERROR = "error"

TERMINAL_STATUSES = {STATUS_DONE, STATUS_ERROR}


@dataclass(frozen=True)
class Line:
    """One text line and its conversion outcome."""

    id: str
    text: str
    status: str = STATUS_PENDING
    audio_data: Optional[str] = None
    error: Optional[str] = None
    start_time_ms: Optional[int] = None
    end_time_ms: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def has_audio(self) -> bool:
        return self.status == STATUS_DONE and bool(self.audio_data)

    def replace(self, **changes: object) -> "Line":
        return dataclasses.replace(self, **changes)


@dataclass(frozen=True)
class FileBatch:
    """Lines parsed from one input file, in source order."""

    id: str
    name: str
    status: str = STATUS_PENDING
    lines: Tuple[Line, ...] = field(default_factory=tuple)

    @property
    def base_name(self) -> str:
        return os.path.splitext(self.name)[0]

    @property
    def has_timing(self) -> bool:
        return any(line.end_time_ms is not None for line in self.lines)

    @property
    def all_terminal(self) -> bool:
        return all(line.is_terminal for line in self.lines)

    def line(self, line_id: str) -> Line:
        for line in self.lines:
            if line.id == line_id:
                return line
        raise KeyError(f"Unknown line id {line_id!r} in batch {self.id!r}")

    def counts(self) -> Dict[str, int]:
        out = {STATUS_PENDING: 0, STATUS_CONVERTING: 0, STATUS_DONE: 0, STATUS_ERROR: 0}
        for line in self.lines:
            out[line.status] = out.get(line.status, 0) + 1
        return out

    def with_line(self, line: Line) -> "FileBatch":
        """Return a copy with the line sharing `line.id` replaced."""
        replaced = False
        new_lines: List[Line] = []
        for current in self.lines:
            if current.id == line.id:
                new_lines.append(line)
                replaced = True
            else:
                new_lines.append(current)
        if not replaced:
            raise KeyError(f"Unknown line id {line.id!r} in batch {self.id!r}")
        return dataclasses.replace(self, lines=tuple(new_lines))


def new_batch(
    *,
    batch_id: str,
    name: str,
    records: Iterable[Dict[str, object]],
) -> FileBatch:
    """Build a pending batch from parsed `{id, text, start_time_ms?, end_time_ms?}` records."""
    lines: List[Line] = []
    seen: set[str] = set()
    for record in records:
        line_id = str(record.get("id", "")).strip()
        if not line_id:
            raise ValueError("Line record is missing an id")
        if line_id in seen:
            raise ValueError(f"Duplicate line id {line_id!r} in {name}")
        seen.add(line_id)
        start = record.get("start_time_ms")
        end = record.get("end_time_ms")
        lines.append(
            Line(
                id=line_id,
                text=str(record.get("text", "")),
                start_time_ms=None if start is None else int(start),  # type: ignore[arg-type]
                end_time_ms=None if end is None else int(end),  # type: ignore[arg-type]
            )
        )
    return FileBatch(id=batch_id, name=name, lines=tuple(lines))


Observer = Callable[[FileBatch, Optional[Line]], None]


class LineRepository:
    """Caller-owned store of batches with id-keyed whole-record updates."""

    def __init__(self) -> None:
        self._batches: Dict[str, FileBatch] = {}
        self._observers: List[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _publish(self, batch: FileBatch, line: Optional[Line]) -> None:
        for observer in list(self._observers):
            observer(batch, line)

    def add_batch(self, batch: FileBatch) -> FileBatch:
        if batch.id in self._batches:
            raise ValueError(f"Batch {batch.id!r} already exists")
        self._batches[batch.id] = batch
        self._publish(batch, None)
        return batch

    def remove_batch(self, batch_id: str) -> None:
        self._batches.pop(batch_id, None)

    def get_batch(self, batch_id: str) -> FileBatch:
        try:
            return self._batches[batch_id]
        except KeyError:
            raise KeyError(f"Unknown batch id {batch_id!r}") from None

    def batches(self) -> List[FileBatch]:
        return list(self._batches.values())

    def pending_batches(self) -> List[FileBatch]:
        return [batch for batch in self._batches.values() if batch.status == STATUS_PENDING]

    def replace_line(self, batch_id: str, line: Line) -> FileBatch:
        batch = self.get_batch(batch_id).with_line(line)
        self._batches[batch_id] = batch
        self._publish(batch, line)
        return batch

    def set_batch_status(self, batch_id: str, status: str) -> FileBatch:
        batch = dataclasses.replace(self.get_batch(batch_id), status=status)
        self._batches[batch_id] = batch
        self._publish(batch, None)
        return batch
