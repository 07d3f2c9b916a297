#!/usr/bin/env python3
from __future__ import annotations

"""Convert `.txt` / `.srt` line files into per-line and merged WAV audio.

Each input file becomes one batch. Batches are converted one after another;
the lines inside a batch are synthesized concurrently. A `run_summary.json`
in the output directory records per-line outcomes.
"""

import argparse
import asyncio
import dataclasses
import os
import sys
import time
from typing import Dict, List

from voicer.audio_merger import AudioMerger
from voicer.batch_scheduler import BatchScheduler
from voicer.config import ConversionConfig, GeminiConfig, LoggingConfig, resolve_api_key
from voicer.errors import NoSuccessfulLinesError, ParseError, SynthesisError
from voicer.gemini_client import KNOWN_VOICES, GeminiClient
from voicer.io_utils import write_bytes_atomic, write_json
from voicer.line_converter import LineConverter
from voicer.line_parser import load_batch
from voicer.logging_utils import Logger
from voicer.models import STATUS_DONE, STATUS_ERROR, FileBatch, LineRepository
from voicer.output_writer import write_line_wavs, write_merged_wav, write_zip_archive
from voicer.pcm_codec import decode_payload
from voicer.tts_provider import build_request_text
from voicer.wav_encoder import encode_wav

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise argparse.ArgumentTypeError("must be an integer") from None
    if parsed < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return parsed


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments for batch conversion."""
    parser = argparse.ArgumentParser(
        description="Convert text or subtitle lines to speech with Gemini TTS.",
    )
    parser.add_argument("paths", nargs="*", help="Input .txt/.srt files followed by the output directory")
    parser.add_argument("--voice", default=None, help="Prebuilt voice id (see --list-voices)")
    parser.add_argument("--prompt", default=None, help="Style prompt prepended to every line")
    parser.add_argument("--max-in-flight", type=_non_negative_int, default=None, help="0 = unbounded")
    parser.add_argument("--no-merge", action="store_true", help="Skip the merged WAV")
    parser.add_argument("--zip", action="store_true", help="Also write <base>.zip with per-line WAVs")
    parser.add_argument("--list-voices", action="store_true")
    parser.add_argument("--preview", default=None, metavar="TEXT", help="Synthesize TEXT into preview.wav")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args(argv)
    if args.list_voices:
        return args
    minimum = 1 if args.preview is not None else 2
    if len(args.paths) < minimum:
        parser.error("expected INPUT... OUTDIR" if minimum == 2 else "expected OUTDIR")
    args.inputs = list(args.paths[:-1])
    args.outdir = args.paths[-1]
    return args


def _batch_summary(batch: FileBatch, outputs: Dict[str, object]) -> Dict[str, object]:
    return {
        "batch_id": batch.id,
        "name": batch.name,
        "status": batch.status,
        "counts": batch.counts(),
        "outputs": outputs,
        "lines": [
            {
                "id": line.id,
                "status": line.status,
                "text": line.text,
                "error": line.error,
            }
            for line in batch.lines
        ],
    }


def _write_outputs(
    batch: FileBatch,
    outdir: str,
    *,
    merge: bool,
    make_zip: bool,
    merger: AudioMerger,
    logger: Logger,
) -> Dict[str, object]:
    batch_dir = os.path.join(outdir, batch.base_name)
    outputs: Dict[str, object] = {"lines": write_line_wavs(batch, batch_dir)}
    if merge:
        try:
            outputs["merged"] = write_merged_wav(batch, outdir, merger)
        except NoSuccessfulLinesError as exc:
            logger.warn("merge_skipped", batch=batch.name, error_kind=exc.error_kind, error=str(exc))
            outputs["merge_error"] = str(exc)
    if make_zip:
        try:
            outputs["zip"] = write_zip_archive(batch, os.path.join(outdir, f"{batch.base_name}.zip"))
        except NoSuccessfulLinesError as exc:
            logger.warn("zip_skipped", batch=batch.name, error_kind=exc.error_kind, error=str(exc))
            outputs["zip_error"] = str(exc)
    return outputs


async def _run_preview(
    client: GeminiClient,
    conv_cfg: ConversionConfig,
    *,
    text: str,
    outdir: str,
    api_key: str,
) -> str:
    payload = await client.synthesize(
        text=build_request_text(text, conv_cfg.voice_prompt),
        voice=conv_cfg.voice,
        credentials=api_key,
    )
    return write_bytes_atomic(os.path.join(outdir, "preview.wav"), encode_wav(decode_payload(payload)))


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.list_voices:
        for voice in KNOWN_VOICES:
            print(f"{voice['id']}\t{voice['name']}")
        return EXIT_OK

    log_cfg = LoggingConfig.from_env()
    if args.debug:
        log_cfg = dataclasses.replace(log_cfg, level="DEBUG", debug_events=True)
    elif args.verbose:
        log_cfg = dataclasses.replace(log_cfg, level="INFO")
    logger = Logger.create(log_cfg)

    conv_cfg = ConversionConfig.from_env()
    if args.voice:
        conv_cfg = dataclasses.replace(conv_cfg, voice=args.voice.strip())
    if args.prompt is not None:
        conv_cfg = dataclasses.replace(conv_cfg, voice_prompt=args.prompt.strip())
    if args.max_in_flight is not None:
        conv_cfg = dataclasses.replace(conv_cfg, max_in_flight=args.max_in_flight)
    known_ids = {voice["id"] for voice in KNOWN_VOICES}
    if conv_cfg.voice not in known_ids:
        logger.warn("unknown_voice", voice=conv_cfg.voice)

    api_key = resolve_api_key()
    if not api_key:
        logger.error("missing_api_key", hint="set GEMINI_API_KEY or GOOGLE_API_KEY")
        return EXIT_FATAL

    client = GeminiClient(config=GeminiConfig.from_env(), logger=logger)

    if args.preview is not None:
        try:
            path = asyncio.run(
                _run_preview(client, conv_cfg, text=args.preview, outdir=args.outdir, api_key=api_key)
            )
        except (SynthesisError, ValueError) as exc:
            logger.error("preview_failed", error_kind=getattr(exc, "error_kind", "invalid_audio"), error=str(exc))
            return EXIT_FATAL
        logger.info("preview_written", path=path)
        print(path)
        return EXIT_OK

    repository = LineRepository()
    # Per-batch output dir and ZIP are keyed by file stem.
    stems: Dict[str, str] = {}
    for path in args.inputs:
        try:
            batch = load_batch(path, on_fallback=lambda enc, p=path: logger.warn("input_encoding_fallback", path=p, encoding=enc))
        except ParseError as exc:
            logger.error("input_rejected", path=path, error=str(exc))
            continue
        if batch.base_name in stems:
            logger.error(
                "input_rejected",
                path=path,
                error=f"Output name {batch.base_name!r} already used by {stems[batch.base_name]}",
            )
            continue
        try:
            repository.add_batch(batch)
            stems[batch.base_name] = path
        except ValueError as exc:
            logger.warn("input_duplicate", path=path, error=str(exc))
    if not repository.batches():
        logger.error("no_input_batches")
        return EXIT_FATAL

    converter = LineConverter(config=conv_cfg, logger=logger, synthesizer=client, rewriter=client)
    scheduler = BatchScheduler(
        repository=repository,
        converter=converter,
        config=conv_cfg,
        logger=logger,
        credentials=api_key,
    )
    started = time.time()
    with logger.timed("convert_all", batches=len(repository.batches()), voice=conv_cfg.voice):
        finished = asyncio.run(scheduler.convert_all())

    merger = AudioMerger(logger=logger)
    summaries: List[Dict[str, object]] = []
    failed_lines = 0
    write_failures = 0
    for batch in finished:
        try:
            outputs = _write_outputs(
                batch,
                args.outdir,
                merge=not args.no_merge,
                make_zip=args.zip,
                merger=merger,
                logger=logger,
            )
        except ValueError as exc:
            # Malformed audio payload; keep going so the summary is still written.
            logger.error("batch_write_failed", batch=batch.name, error=str(exc))
            outputs = {"write_error": str(exc)}
            write_failures += 1
        failed_lines += batch.counts().get(STATUS_ERROR, 0)
        summaries.append(_batch_summary(batch, outputs))

    status = "ok" if failed_lines == 0 and write_failures == 0 else "partial"
    summary_path = write_json(
        os.path.join(args.outdir, "run_summary.json"),
        {
            "run_id": logger.run_id,
            "status": status,
            "voice": conv_cfg.voice,
            "elapsed_ms": int((time.time() - started) * 1000),
            "lines_done": sum(b.counts().get(STATUS_DONE, 0) for b in finished),
            "lines_failed": failed_lines,
            "batches_write_failed": write_failures,
            "batches": summaries,
        },
    )
    logger.info("run_summary_written", path=summary_path, status=status)
    return EXIT_OK if status == "ok" else EXIT_PARTIAL


if __name__ == "__main__":
    sys.exit(main())
