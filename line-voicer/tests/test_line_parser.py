import os
import sys
import tempfile
import unittest


SCRIPTS_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPTS_DIR not in sys.path:
    sys.path.insert(0, SCRIPTS_DIR)

from voicer.errors import ParseError  # noqa: E402
from voicer.io_utils import read_text_file_with_fallback  # noqa: E402
from voicer.line_parser import load_batch, parse_srt, parse_srt_timestamp, parse_txt  # noqa: E402


SRT_SAMPLE = """1
00:00:01,000 --> 00:00:02,500
<i>Hello</i> there

2
00:00:03,000 --> 00:00:04,000
Second
line

not-a-number
00:00:05,000 --> 00:00:06,000
skipped
"""


class SrtParserTests(unittest.TestCase):
    def test_parses_blocks_with_timing(self) -> None:
        records = parse_srt(SRT_SAMPLE)
        self.assertEqual(
            records,
            [
                {"id": "1", "text": "Hello there", "start_time_ms": 1000, "end_time_ms": 2500},
                {"id": "2", "text": "Second line", "start_time_ms": 3000, "end_time_ms": 4000},
            ],
        )

    def test_crlf_input(self) -> None:
        records = parse_srt(SRT_SAMPLE.replace("\n", "\r\n"))
        self.assertEqual([r["id"] for r in records], ["1", "2"])

    def test_bad_timestamp_is_zero(self) -> None:
        self.assertEqual(parse_srt_timestamp("00:01:02,003"), 62003)
        self.assertEqual(parse_srt_timestamp("garbage"), 0)
        self.assertEqual(parse_srt_timestamp("aa:bb:cc,ddd"), 0)

    def test_empty_text_blocks_are_dropped(self) -> None:
        self.assertEqual(parse_srt("1\n00:00:00,000 --> 00:00:01,000\n<b></b>\n"), [])


class TxtParserTests(unittest.TestCase):
    def test_id_text_format(self) -> None:
        records = parse_txt("a1;Hello\na2;World; again\n")
        self.assertEqual(records, [{"id": "a1", "text": "Hello"}, {"id": "a2", "text": "World; again"}])

    def test_plain_lines_get_padded_ids(self) -> None:
        records = parse_txt("First line\n\nSecond; line\nno separator here\n")
        self.assertEqual([r["id"] for r in records], ["001", "002", "003"])
        self.assertEqual(records[1]["text"], "Second; line")

    def test_empty_second_field_falls_back_to_numbering(self) -> None:
        records = parse_txt("a;;b\nc;d\n")
        self.assertEqual([r["id"] for r in records], ["001", "002"])
        self.assertEqual(records[0]["text"], "a;;b")

    def test_text_keeps_later_separators(self) -> None:
        records = parse_txt("a; x ;y\n")
        self.assertEqual(records, [{"id": "a", "text": "x ;y"}])

    def test_empty_content(self) -> None:
        self.assertEqual(parse_txt("   \n\n"), [])


class LoadBatchTests(unittest.TestCase):
    def test_load_srt_batch(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "episode.srt")
            with open(path, "w", encoding="utf-8") as f:
                f.write(SRT_SAMPLE)
            batch = load_batch(path)
        self.assertEqual(batch.name, "episode.srt")
        self.assertTrue(batch.id.startswith("episode.srt-"))
        self.assertTrue(batch.has_timing)
        self.assertEqual(len(batch.lines), 2)

    def test_unsupported_and_empty_inputs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            odd = os.path.join(tmp, "notes.md")
            empty = os.path.join(tmp, "empty.txt")
            for path in (odd, empty):
                with open(path, "w", encoding="utf-8") as f:
                    f.write("\n")
            with self.assertRaisesRegex(ParseError, "Unsupported file type: .md"):
                load_batch(odd)
            with self.assertRaisesRegex(ParseError, "Could not find any text"):
                load_batch(empty)

    def test_duplicate_ids_are_rejected(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "dup.txt")
            with open(path, "w", encoding="utf-8") as f:
                f.write("1;a\n1;b\n")
            with self.assertRaises(ParseError):
                load_batch(path)

    def test_cp1252_fallback(self) -> None:
        text = "Información útil"
        seen = []
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "input_cp1252.txt")
            with open(path, "wb") as f:
                f.write(text.encode("cp1252"))
            out, enc = read_text_file_with_fallback(path, on_fallback=seen.append)
        self.assertEqual(out, text)
        self.assertEqual(enc, "cp1252")
        self.assertEqual(seen, ["cp1252"])


if __name__ == "__main__":
    unittest.main()
