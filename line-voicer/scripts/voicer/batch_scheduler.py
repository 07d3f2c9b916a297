#!/usr/bin/env python3
from __future__ import annotations

"""Fan-out/fan-in of line conversions over the repository's batches."""

import asyncio
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from .config import ConversionConfig
from .line_converter import LineConverter
from .logging_utils import Logger
from .models import (
    STATUS_CONVERTING,
    STATUS_DONE,
    STATUS_ERROR,
    FileBatch,
    Line,
    LineRepository,
)


@dataclass
class BatchScheduler:
    """Run every line of a batch concurrently and settle the batch status.

    Lines within a batch are independent: each task only ever replaces its
    own line record. Batches handled by `convert_all` run one after another.
    """

    repository: LineRepository
    converter: LineConverter
    config: ConversionConfig
    logger: Logger
    credentials: str = ""

    def _publisher(self, batch_id: str) -> Callable[[Line], None]:
        def publish(line: Line) -> None:
            self.repository.replace_line(batch_id, line)

        return publish

    async def _convert_line(
        self,
        batch_id: str,
        line: Line,
        gate: Optional[asyncio.Semaphore],
    ) -> Line:
        kwargs = dict(
            voice=self.config.voice,
            prompt_prefix=self.config.voice_prompt,
            credentials=self.credentials,
            publish=self._publisher(batch_id),
        )
        if gate is None:
            return await self.converter.convert(line, **kwargs)
        async with gate:
            return await self.converter.convert(line, **kwargs)

    def _merge_results(self, batch_id: str, lines: List[Line], results: List[object]) -> None:
        """Apply returned terminal lines; escaped exceptions become line errors."""
        for line, result in zip(lines, results):
            if isinstance(result, Line):
                self.repository.replace_line(batch_id, result)
                continue
            message = str(result) or type(result).__name__
            self.logger.error("line_task_crashed", batch_id=batch_id, line_id=line.id, error=message)
            current = self.repository.get_batch(batch_id).line(line.id)
            self.repository.replace_line(
                batch_id,
                current.replace(status=STATUS_ERROR, error=message, audio_data=None),
            )

    def status_snapshot(self, batch_id: str) -> Dict[str, object]:
        """Counts used by the heartbeat while a batch is in flight."""
        batch = self.repository.get_batch(batch_id)
        return dict(batch.counts())

    async def convert_batch(self, batch_id: str) -> FileBatch:
        batch = self.repository.set_batch_status(batch_id, STATUS_CONVERTING)
        lines = list(batch.lines)
        gate = asyncio.Semaphore(self.config.max_in_flight) if self.config.max_in_flight > 0 else None
        log = self.logger.bind(batch_id=batch_id, batch=batch.name)
        log.info("batch_start", lines=len(lines), max_in_flight=self.config.max_in_flight)
        with log.heartbeat(f"batch-{batch.base_name}", status_fn=lambda: self.status_snapshot(batch_id)):
            results = await asyncio.gather(
                *(self._convert_line(batch_id, line, gate) for line in lines),
                return_exceptions=True,
            )
        self._merge_results(batch_id, lines, list(results))
        done = self.repository.set_batch_status(batch_id, STATUS_DONE)
        log.info("batch_done", **done.counts())
        return done

    async def convert_all(self) -> List[FileBatch]:
        """Convert every pending batch, strictly one batch at a time."""
        finished: List[FileBatch] = []
        for batch in self.repository.pending_batches():
            finished.append(await self.convert_batch(batch.id))
        return finished

    async def retry_line(self, batch_id: str, line_id: str) -> Line:
        """Run the conversion again for a single line of an existing batch.

        The batch re-enters `converting` for the duration so its status keeps
        matching its lines.
        """
        batch = self.repository.get_batch(batch_id)
        if batch.status == STATUS_CONVERTING:
            raise RuntimeError(f"Batch {batch.name} is already converting")
        line = batch.line(line_id)
        previous_status = batch.status
        self.repository.set_batch_status(batch_id, STATUS_CONVERTING)
        self.logger.info("line_retry", batch_id=batch_id, line_id=line_id)
        results = await asyncio.gather(self._convert_line(batch_id, line, None), return_exceptions=True)
        self._merge_results(batch_id, [line], list(results))
        batch = self.repository.get_batch(batch_id)
        # Untouched siblings may still be pending.
        settled = STATUS_DONE if batch.all_terminal else previous_status
        batch = self.repository.set_batch_status(batch_id, settled)
        return batch.line(line_id)
