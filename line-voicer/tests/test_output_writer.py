import os
import sys
import tempfile
import unittest
import zipfile


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from voicer.errors import NoSuccessfulLinesError  # noqa: E402
from voicer.models import STATUS_DONE, STATUS_ERROR, FileBatch, Line  # noqa: E402
from voicer.output_writer import (  # noqa: E402
    line_wav_name,
    merge_batch,
    merged_wav_name,
    write_line_wavs,
    write_merged_wav,
    write_zip_archive,
)
from voicer.pcm_codec import encode_payload  # noqa: E402
from voicer.wav_encoder import read_wav_data  # noqa: E402


def _batch(name: str, *, timed: bool) -> FileBatch:
    timing = {"start_time_ms": 0, "end_time_ms": 100} if timed else {}
    return FileBatch(
        id="b",
        name=name,
        status=STATUS_DONE,
        lines=(
            Line(id="001", text="a", status=STATUS_DONE, audio_data=encode_payload(b"\x01\x00"), **timing),
            Line(id="002", text="b", status=STATUS_ERROR, error="nope"),
        ),
    )


class OutputWriterTests(unittest.TestCase):
    def test_names(self) -> None:
        self.assertEqual(line_wav_name("007"), "007.wav")
        self.assertEqual(merged_wav_name(_batch("talk.txt", timed=False)), "talk_merged.wav")
        self.assertEqual(merged_wav_name(_batch("talk.srt", timed=True)), "talk_timed_merged.wav")

    def test_merge_picks_strategy_from_timing(self) -> None:
        self.assertEqual(read_wav_data(merge_batch(_batch("a.txt", timed=False))), b"\x01\x00")
        timed = read_wav_data(merge_batch(_batch("a.srt", timed=True)))
        self.assertEqual(len(timed), 2100 * 48)
        self.assertEqual(timed[:2], b"\x01\x00")

    def test_writes_line_and_merged_files(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            written = write_line_wavs(_batch("a.txt", timed=False), tmp)
            self.assertEqual([os.path.basename(p) for p in written], ["001.wav"])
            merged = write_merged_wav(_batch("a.txt", timed=False), tmp)
            self.assertEqual(os.path.basename(merged), "a_merged.wav")
            with open(merged, "rb") as f:
                self.assertEqual(read_wav_data(f.read()), b"\x01\x00")
            self.assertFalse(any(name.endswith(".tmp") for name in os.listdir(tmp)))

    def test_zip_contains_successful_lines_only(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = write_zip_archive(_batch("show.txt", timed=False), os.path.join(tmp, "show.zip"))
            with zipfile.ZipFile(path) as archive:
                self.assertEqual(archive.namelist(), ["show/001.wav"])
                self.assertEqual(read_wav_data(archive.read("show/001.wav")), b"\x01\x00")

    def test_zip_without_audio_raises(self) -> None:
        batch = FileBatch(id="b", name="x.txt", lines=(Line(id="1", text="t", status=STATUS_ERROR),))
        with tempfile.TemporaryDirectory() as tmp:
            with self.assertRaises(NoSuccessfulLinesError):
                write_zip_archive(batch, os.path.join(tmp, "x.zip"))
            self.assertEqual(os.listdir(tmp), [])


if __name__ == "__main__":
    unittest.main()
