import asyncio
import os
import sys
import unittest
from typing import Dict, List


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from voicer.audio_merger import merge_concat, merge_timed  # noqa: E402
from voicer.batch_scheduler import BatchScheduler  # noqa: E402
from voicer.config import ConversionConfig  # noqa: E402
from voicer.errors import ERROR_KIND_TRANSPORT, NoSuccessfulLinesError, SynthesisError  # noqa: E402
from voicer.line_converter import LineConverter  # noqa: E402
from voicer.logging_utils import Logger  # noqa: E402
from voicer.models import (  # noqa: E402
    STATUS_CONVERTING,
    STATUS_DONE,
    STATUS_ERROR,
    STATUS_PENDING,
    LineRepository,
    new_batch,
)


class ScriptedSynthesizer:
    """Fails every call whose text appears in `failing`; tracks concurrency."""

    def __init__(self, failing: set | None = None, *, pause: float = 0.01) -> None:
        self.failing = set(failing or ())
        self.pause = pause
        self.in_flight = 0
        self.peak = 0
        self.calls: List[str] = []

    async def synthesize(self, *, text: str, voice: str, credentials: str) -> str:
        self.calls.append(text)
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self.pause)
        finally:
            self.in_flight -= 1
        if text in self.failing:
            raise SynthesisError(f"failed: {text}", error_kind=ERROR_KIND_TRANSPORT)
        return "AAABAA=="


class NoRewrite:
    async def rewrite(self, *, text: str, credentials: str) -> str:
        raise AssertionError("rewrite must not be called")


async def _no_sleep(seconds: float) -> None:
    return None


def _config(**overrides) -> ConversionConfig:
    values = dict(voice="Puck", voice_prompt="", retry_attempts=2, retry_delay_ms=0, max_in_flight=0)
    values.update(overrides)
    return ConversionConfig(**values)


def _scheduler(repo: LineRepository, synth: ScriptedSynthesizer, cfg: ConversionConfig) -> BatchScheduler:
    logger = Logger.quiet()
    converter = LineConverter(config=cfg, logger=logger, synthesizer=synth, rewriter=NoRewrite(), sleep=_no_sleep)
    return BatchScheduler(repository=repo, converter=converter, config=cfg, logger=logger, credentials="k")


def _records(*texts: str) -> List[Dict[str, object]]:
    return [{"id": f"{i:03d}", "text": text} for i, text in enumerate(texts, start=1)]


class BatchSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_all_lines_start_together_and_batch_completes(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("one", "two", "three", "four")))
        synth = ScriptedSynthesizer()
        done = await _scheduler(repo, synth, _config()).convert_batch("b1")
        self.assertEqual(done.status, STATUS_DONE)
        self.assertEqual(synth.peak, 4)
        self.assertTrue(all(line.status == STATUS_DONE for line in done.lines))
        self.assertEqual([line.id for line in done.lines], ["001", "002", "003", "004"])

    async def test_failures_are_isolated(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("ok", "bad", "fine")))
        done = await _scheduler(repo, ScriptedSynthesizer({"bad"}), _config()).convert_batch("b1")
        self.assertEqual(done.status, STATUS_DONE)
        self.assertEqual([line.status for line in done.lines], [STATUS_DONE, STATUS_ERROR, STATUS_DONE])
        self.assertEqual(done.line("002").error, "failed: bad")

    async def test_all_failed_batch_is_done_and_merges_refuse(self) -> None:
        repo = LineRepository()
        records = [
            {"id": "1", "text": "x", "start_time_ms": 0, "end_time_ms": 500},
            {"id": "2", "text": "y", "start_time_ms": 600, "end_time_ms": 900},
        ]
        repo.add_batch(new_batch(batch_id="b1", name="a.srt", records=records))
        done = await _scheduler(repo, ScriptedSynthesizer({"x", "y"}), _config()).convert_batch("b1")
        self.assertEqual(done.status, STATUS_DONE)
        self.assertTrue(all(line.status == STATUS_ERROR for line in done.lines))
        with self.assertRaises(NoSuccessfulLinesError):
            merge_concat(done)
        with self.assertRaises(NoSuccessfulLinesError):
            merge_timed(done)
        self.assertTrue(all(line.status == STATUS_ERROR for line in repo.get_batch("b1").lines))

    async def test_max_in_flight_bounds_concurrency(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records(*[f"t{i}" for i in range(6)])))
        synth = ScriptedSynthesizer()
        done = await _scheduler(repo, synth, _config(max_in_flight=2)).convert_batch("b1")
        self.assertEqual(done.status, STATUS_DONE)
        self.assertLessEqual(synth.peak, 2)
        self.assertEqual(len(synth.calls), 6)

    async def test_convert_all_runs_batches_sequentially(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("a1", "a2")))
        repo.add_batch(new_batch(batch_id="b2", name="b.txt", records=_records("b1", "b2")))
        synth = ScriptedSynthesizer()
        events: List[tuple] = []
        repo.subscribe(lambda batch, line: events.append((batch.id, batch.status)) if line is None else None)
        finished = await _scheduler(repo, synth, _config()).convert_all()
        self.assertEqual([batch.id for batch in finished], ["b1", "b2"])
        self.assertEqual(
            events,
            [("b1", STATUS_CONVERTING), ("b1", STATUS_DONE), ("b2", STATUS_CONVERTING), ("b2", STATUS_DONE)],
        )
        self.assertEqual(synth.peak, 2)

    async def test_convert_all_skips_batches_already_converted(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("a1")))
        scheduler = _scheduler(repo, ScriptedSynthesizer(), _config())
        await scheduler.convert_all()
        self.assertEqual(await scheduler.convert_all(), [])

    async def test_progress_is_published_per_line(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("a", "b")))
        seen: Dict[str, List[str]] = {}

        def observer(batch, line) -> None:
            if line is not None:
                seen.setdefault(line.id, []).append(line.status)

        repo.subscribe(observer)
        await _scheduler(repo, ScriptedSynthesizer(), _config()).convert_batch("b1")
        for statuses in seen.values():
            self.assertEqual(statuses[0], STATUS_CONVERTING)
            self.assertEqual(statuses[-1], STATUS_DONE)

    async def test_retry_line_reconverts_a_failed_line(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("ok", "bad")))
        synth = ScriptedSynthesizer({"bad"})
        scheduler = _scheduler(repo, synth, _config())
        await scheduler.convert_batch("b1")
        self.assertEqual(repo.get_batch("b1").line("002").status, STATUS_ERROR)

        synth.failing.clear()
        line = await scheduler.retry_line("b1", "002")
        self.assertEqual(line.status, STATUS_DONE)
        self.assertIsNone(line.error)
        batch = repo.get_batch("b1")
        self.assertEqual(batch.status, STATUS_DONE)
        self.assertEqual(batch.counts()[STATUS_DONE], 2)

    async def test_crashing_converter_marks_only_that_line(self) -> None:
        repo = LineRepository()
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("a", "b")))
        cfg = _config()
        scheduler = _scheduler(repo, ScriptedSynthesizer(), cfg)
        real_convert = scheduler.converter.convert

        async def flaky(line, **kwargs):
            if line.id == "002":
                raise RuntimeError("publisher exploded")
            return await real_convert(line, **kwargs)

        scheduler.converter.convert = flaky  # type: ignore[method-assign]
        done = await scheduler.convert_batch("b1")
        self.assertEqual(done.line("001").status, STATUS_DONE)
        self.assertEqual(done.line("002").status, STATUS_ERROR)
        self.assertEqual(done.line("002").error, "publisher exploded")


class RepositoryTests(unittest.TestCase):
    def test_new_batch_rejects_duplicate_ids(self) -> None:
        with self.assertRaises(ValueError):
            new_batch(batch_id="b", name="a.txt", records=[{"id": "1", "text": "a"}, {"id": "1", "text": "b"}])

    def test_unsubscribe_stops_notifications(self) -> None:
        repo = LineRepository()
        calls: List[str] = []
        unsubscribe = repo.subscribe(lambda batch, line: calls.append(batch.id))
        repo.add_batch(new_batch(batch_id="b1", name="a.txt", records=_records("x")))
        unsubscribe()
        repo.set_batch_status("b1", STATUS_CONVERTING)
        self.assertEqual(calls, ["b1"])
        self.assertEqual(repo.pending_batches(), [])
        self.assertEqual(repo.get_batch("b1").status, STATUS_CONVERTING)

    def test_pending_batch_defaults(self) -> None:
        batch = new_batch(batch_id="b1", name="clip.srt", records=_records("x"))
        self.assertEqual(batch.status, STATUS_PENDING)
        self.assertEqual(batch.base_name, "clip")
        self.assertFalse(batch.has_timing)


if __name__ == "__main__":
    unittest.main()
