#!/usr/bin/env python3
from __future__ import annotations

"""Structured stderr logging for conversion runs.

Every record is one line: `[time] [LEVEL] [run:<id>] event {json fields}`.
Loggers can be bound to context fields (batch id, file name) that are merged
into every record they emit.
"""

import json
import sys
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, Optional

from .config import LoggingConfig


LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARN": 30,
    "WARNING": 30,
    "ERROR": 40,
}


def _render_fields(fields: Dict[str, object]) -> str:
    return json.dumps(fields, ensure_ascii=True, sort_keys=True, default=str)


@dataclass
class Logger:
    config: LoggingConfig
    run_id: str
    context: Dict[str, object] = field(default_factory=dict)

    @staticmethod
    def create(config: LoggingConfig) -> "Logger":
        return Logger(config=config, run_id=uuid.uuid4().hex[:10])

    @staticmethod
    def quiet() -> "Logger":
        """Errors only; used by library defaults and tests."""
        return Logger.create(
            LoggingConfig(level="ERROR", heartbeat_seconds=1, debug_events=False, include_event_ids=False)
        )

    def bind(self, **fields: object) -> "Logger":
        """Child logger sharing the run id with extra context fields."""
        merged = dict(self.context)
        merged.update(fields)
        return Logger(config=self.config, run_id=self.run_id, context=merged)

    def enabled(self, level: str) -> bool:
        threshold = LEVELS.get(str(self.config.level).upper(), 20)
        return LEVELS.get(level, 20) >= threshold

    def _emit(self, level: str, event: str, fields: Dict[str, object]) -> None:
        if not self.enabled(level):
            return
        record = dict(self.context)
        record.update(fields)
        stamp = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime())
        prefix = f"[{stamp}] [{level}] [run:{self.run_id}]"
        if self.config.include_event_ids:
            prefix += f" [event:{uuid.uuid4().hex[:8]}]"
        suffix = f" {_render_fields(record)}" if record else ""
        print(f"{prefix} {event}{suffix}", file=sys.stderr, flush=True)

    def debug(self, event: str, **fields: object) -> None:
        # Debug records stay off unless explicitly requested, even at DEBUG level.
        if self.config.debug_events:
            self._emit("DEBUG", event, fields)

    def info(self, event: str, **fields: object) -> None:
        self._emit("INFO", event, fields)

    def warn(self, event: str, **fields: object) -> None:
        self._emit("WARN", event, fields)

    def error(self, event: str, **fields: object) -> None:
        self._emit("ERROR", event, fields)

    @contextmanager
    def timed(self, name: str, **fields: object) -> Iterator[None]:
        """Log `<name>_started` / `<name>_completed` with elapsed milliseconds."""
        started = time.monotonic()
        self.info(f"{name}_started", **fields)
        try:
            yield
        finally:
            self.info(f"{name}_completed", elapsed_ms=int((time.monotonic() - started) * 1000), **fields)

    @contextmanager
    def heartbeat(
        self,
        label: str,
        status_fn: Optional[Callable[[], Dict[str, object]]] = None,
    ) -> Iterator[None]:
        """Report progress every `heartbeat_seconds` while the block runs.

        The ticker is a daemon thread, so it keeps reporting while the event
        loop is parked on network calls.
        """
        stop = threading.Event()
        interval = max(1, int(self.config.heartbeat_seconds))

        def tick() -> None:
            while not stop.wait(interval):
                payload: Dict[str, object] = {"label": label}
                if status_fn is not None:
                    try:
                        payload.update(status_fn())
                    except Exception as exc:  # noqa: BLE001
                        payload["status_error"] = str(exc)
                self.info("heartbeat", **payload)

        ticker = threading.Thread(target=tick, name=f"hb-{label}", daemon=True)
        ticker.start()
        try:
            yield
        finally:
            stop.set()
            ticker.join(timeout=interval)
