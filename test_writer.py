from __future__ import annotations

import contextlib
import io
import os
import struct
import tempfile
import unittest
from pathlib import Path
from typing import List

from sit.codec import EncodedFork
from sit.constants import MAX_FORK_LEN, METHOD_NONE
from sit.crc16 import crc16
from sit.errors import ArchiveOutputError
from sit.reader import ArchiveReader, Entry
from sit.records import ItemHeader
from sit.writer import ArchiveOptions, ArchiveWriter, build_archive


def _quiet_build(out: Path, items: List[Path], options: ArchiveOptions | None = None):
    err = io.StringIO()
    with contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(err):
        total, count = build_archive(str(out), [str(p) for p in items], options)
    return total, count, err.getvalue()


def _entries(archive: Path) -> List[Entry]:
    with ArchiveReader(str(archive)) as reader:
        return list(reader.list())


def _create_tree(base: Path) -> Path:
    top = base / "top"
    (top / "sub").mkdir(parents=True)
    (top / "a.txt").write_bytes(b"x" * 100)
    (top / "sub" / "b.txt").write_bytes(b"hi")
    return top


class ArchiveWriterTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_single_file(self):
        def scenario(tmp: Path):
            (tmp / "note").write_bytes(b"hello world\n")
            out = tmp / "out.sit"
            total, count, _ = _quiet_build(out, [tmp / "note"])
            self.assertEqual(1, count)
            self.assertEqual(out.stat().st_size, total)
            self.assertEqual(22 + 112 + 12, total)

            entries = _entries(out)
            self.assertEqual(1, len(entries))
            h = entries[0].header
            self.assertEqual("note", entries[0].name)
            self.assertEqual(0, h.sec_method)
            self.assertEqual((0, 0, 0), (h.sec_orig_len, h.sec_stored_len, h.sec_crc))
            self.assertEqual(b"TEXT", h.ftype)
            self.assertEqual(b"KAHL", h.creator)
            self.assertEqual(12, h.prim_orig_len)
            self.assertEqual(crc16(b"hello world\n"), h.prim_crc)

            raw = out.read_bytes()
            self.assertEqual(b"SIT!", raw[:4])
            self.assertEqual(b"\x00\x01", raw[4:6])
            self.assertEqual(total, int.from_bytes(raw[6:10], "big"))
            self.assertEqual(crc16(raw[22:132]), int.from_bytes(raw[132:134], "big"))

        self.run_with_tmpdir(scenario)

    def test_empty_directory(self):
        def scenario(tmp: Path):
            (tmp / "Empty").mkdir()
            out = tmp / "out.sit"
            total, count, _ = _quiet_build(out, [tmp / "Empty"])
            self.assertEqual((22 + 224, 2), (total, count))
            start, end = _entries(out)
            self.assertTrue(start.header.is_folder_start)
            self.assertTrue(end.header.is_folder_end)
            self.assertEqual((32, 32), (start.header.sec_method, start.header.prim_method))
            self.assertEqual((33, 33), (end.header.sec_method, end.header.prim_method))
            for e in (start, end):
                h = e.header
                self.assertEqual("Empty", e.name)
                self.assertEqual(112, h.sec_stored_len)
                self.assertEqual(112, h.prim_stored_len)
                self.assertEqual(112, h.sec_orig_len)
                self.assertEqual(112, h.prim_orig_len)

        self.run_with_tmpdir(scenario)

    def test_compressible_forks(self):
        def scenario(tmp: Path):
            (tmp / "both").write_bytes(b"B" * 100)
            (tmp / "both.rsrc").write_bytes(b"A" * 40)
            out = tmp / "out.sit"
            _quiet_build(out, [tmp / "both"])
            (entry,) = _entries(out)
            h = entry.header
            self.assertEqual((2, 2), (h.sec_method, h.prim_method))
            self.assertEqual((40, 100), (h.sec_orig_len, h.prim_orig_len))
            self.assertLess(h.sec_stored_len, 40)
            self.assertLess(h.prim_stored_len, 100)
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(b"A" * 40, reader.read_fork(entry, "rsrc"))
                self.assertEqual(b"B" * 100, reader.read_fork(entry, "data"))
                self.assertTrue(reader.verify())

        self.run_with_tmpdir(scenario)

    def test_store_only(self):
        def scenario(tmp: Path):
            (tmp / "both").write_bytes(b"B" * 100)
            (tmp / "both.rsrc").write_bytes(b"A" * 40)
            out = tmp / "out.sit"
            total, _, _ = _quiet_build(out, [tmp / "both"], ArchiveOptions(compress=False))
            (entry,) = _entries(out)
            h = entry.header
            self.assertEqual((0, 0), (h.sec_method, h.prim_method))
            self.assertEqual((40, 100), (h.sec_stored_len, h.prim_stored_len))
            self.assertEqual(22 + 112 + 140, total)
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(b"A" * 40, reader.read_fork(entry, "rsrc"))

        self.run_with_tmpdir(scenario)

    def test_nested_folders(self):
        def scenario(tmp: Path):
            top = _create_tree(tmp)
            out = tmp / "out.sit"
            total, count, _ = _quiet_build(out, [top])
            self.assertEqual(6, count)
            self.assertEqual(out.stat().st_size, total)
            entries = _entries(out)
            self.assertEqual(
                [("top", "folder", 0), ("a.txt", "file", 1), ("sub", "folder", 1), ("b.txt", "file", 2), ("sub", "end", 1), ("top", "end", 0)],
                [(e.name, e.kind, e.depth) for e in entries],
            )
            by_pos = {(e.name, e.kind): e for e in entries}
            for name in ("top", "sub"):
                start = by_pos[(name, "folder")]
                end = by_pos[(name, "end")]
                span = end.offset - start.offset
                self.assertEqual(span, start.header.sec_stored_len)
                self.assertEqual(span, end.header.sec_stored_len)
                self.assertEqual(span, start.header.prim_stored_len)
                self.assertEqual(start.header.prim_orig_len, end.header.prim_orig_len)
            self.assertEqual(112 + 2 + 112, by_pos[("sub", "folder")].header.prim_orig_len)
            self.assertEqual(112 + (100 + 112) + (226 + 112), by_pos[("top", "folder")].header.prim_orig_len)
            with ArchiveReader(str(out)) as reader:
                self.assertTrue(reader.verify())

        self.run_with_tmpdir(scenario)

    def test_every_header_checksum(self):
        def scenario(tmp: Path):
            top = _create_tree(tmp)
            (tmp / "loose").write_bytes(b"loose file")
            out = tmp / "out.sit"
            total, count, _ = _quiet_build(out, [top, tmp / "loose"])
            self.assertEqual(7, count)
            raw = out.read_bytes()
            self.assertEqual(len(raw), total)
            for e in _entries(out):
                block = raw[e.offset : e.offset + 112]
                self.assertEqual(crc16(block[:110]), int.from_bytes(block[110:], "big"))
                ItemHeader.unpack(block)

        self.run_with_tmpdir(scenario)

    def test_unresolvable_items_are_skipped(self):
        def scenario(tmp: Path):
            (tmp / "note").write_bytes(b"hello")
            (tmp / "empty").write_bytes(b"")
            out = tmp / "out.sit"
            total, count, err = _quiet_build(out, [tmp / "missing", tmp / "empty", tmp / "note"])
            self.assertEqual(1, count)
            self.assertEqual(22 + 112 + 5, total)
            self.assertIn("no data or resource files", err)
            self.assertIn("missing", err)
            self.assertEqual(["note"], [e.name for e in _entries(out)])

        self.run_with_tmpdir(scenario)

    def test_failed_item_is_rolled_back(self):
        def scenario(tmp: Path):
            (tmp / "good").write_bytes(b"good data")
            (tmp / "bad").write_bytes(b"bad data")
            out = tmp / "out.sit"

            def failing_encode(source, f, **kwargs):
                f.write(b"partial output" * 10)
                raise OSError(5, "Input/output error")

            err = io.StringIO()
            with contextlib.redirect_stderr(err):
                with ArchiveWriter(str(out)) as w:
                    w.add_item(str(tmp / "good"))
                    real = w.encoder.encode
                    w.encoder.encode = failing_encode
                    res = w.add_item(str(tmp / "bad"))
                    w.encoder.encode = real
                    total, count = w.finalize()
            self.assertEqual(0, res.stored)
            self.assertEqual((22 + 112 + 9, 1), (total, count))
            self.assertEqual(total, out.stat().st_size)
            self.assertIn("bad: Input/output error", err.getvalue())
            self.assertEqual(["good"], [e.name for e in _entries(out)])

        self.run_with_tmpdir(scenario)

    def test_ds_store_and_output_skipped(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            (src / ".DS_Store").write_bytes(b"finder junk")
            (src / "keep.txt").write_bytes(b"keep")
            out = src / "self.sit"
            total, count, _ = _quiet_build(out, [src])
            names = [e.name for e in _entries(out) if e.kind == "file"]
            self.assertEqual(["keep.txt"], names)
            self.assertEqual(out.stat().st_size, total)

        self.run_with_tmpdir(scenario)

    def test_newline_conversion(self):
        def scenario(tmp: Path):
            (tmp / "unix.txt").write_bytes(b"line1\nline2\n")
            out = tmp / "out.sit"
            _quiet_build(out, [tmp / "unix.txt"], ArchiveOptions(convert_newlines=True, compress=False))
            (entry,) = _entries(out)
            self.assertEqual(crc16(b"line1\rline2\r"), entry.header.prim_crc)
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(b"line1\rline2\r", reader.read_fork(entry, "data"))

        self.run_with_tmpdir(scenario)

    def test_converted_and_compressed(self):
        def scenario(tmp: Path):
            text = b"all work and no play makes jack a dull boy\n" * 200
            (tmp / "story.txt").write_bytes(text)
            out = tmp / "out.sit"
            _quiet_build(out, [tmp / "story.txt"], ArchiveOptions(convert_newlines=True))
            (entry,) = _entries(out)
            self.assertEqual(2, entry.header.prim_method)
            expected = text.replace(b"\n", b"\r")
            self.assertEqual(crc16(expected), entry.header.prim_crc)
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(expected, reader.read_fork(entry, "data"))

        self.run_with_tmpdir(scenario)

    def test_incompressible_data_stored(self):
        def scenario(tmp: Path):
            blob = os.urandom(5000)
            (tmp / "noise").write_bytes(blob)
            out = tmp / "out.sit"
            _quiet_build(out, [tmp / "noise"])
            (entry,) = _entries(out)
            self.assertEqual(0, entry.header.prim_method)
            self.assertEqual(5000, entry.header.prim_stored_len)

        self.run_with_tmpdir(scenario)

    def test_type_creator_overrides(self):
        def scenario(tmp: Path):
            (tmp / "pic.jpg").write_bytes(b"\xff\xd8\xff")
            out = tmp / "out.sit"
            _quiet_build(out, [tmp / "pic.jpg"], ArchiveOptions(default_type=b"JPEG", default_creator=b"GKON"))
            (entry,) = _entries(out)
            self.assertEqual((b"JPEG", b"GKON"), (entry.header.ftype, entry.header.creator))

        self.run_with_tmpdir(scenario)

    def test_verbose_summary(self):
        def scenario(tmp: Path):
            top = _create_tree(tmp)
            out = tmp / "out.sit"
            buf = io.StringIO()
            with contextlib.redirect_stdout(buf):
                total, _ = build_archive(str(out), [str(top)], ArchiveOptions(verbose=3))
            text = buf.getvalue()
            self.assertIn(f'Creating archive file "{out}"', text)
            self.assertIn("+ top (directory)", text)
            self.assertIn("* endFolder for sub", text)
            self.assertIn(f'Wrote {total} bytes to "{out}"', text)
            self.assertIn("Savings:", text)

        self.run_with_tmpdir(scenario)

    def test_item_count_matches_entries(self):
        def scenario(tmp: Path):
            top = _create_tree(tmp)
            (tmp / "loose").write_bytes(b"loose file")
            (tmp / "nothing").write_bytes(b"")
            out = tmp / "out.sit"
            _, count, _ = _quiet_build(out, [top, tmp / "nothing", tmp / "loose"])
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(len(reader.list()), reader.header.num_items)
                self.assertEqual(count, reader.header.num_items)
            self.assertEqual(7, count)

        self.run_with_tmpdir(scenario)

    def test_resource_fork_shorter_than_descriptor(self):
        def scenario(tmp: Path):
            (tmp / "photo").write_bytes(b"image data")
            # entry 2 claims 100 bytes but only 30 follow
            head = struct.pack(">II16sH", 0x00051607, 0x00020000, b"\x00" * 16, 1)
            (tmp / "._photo").write_bytes(head + struct.pack(">III", 2, 38, 100) + b"R" * 30)
            out = tmp / "out.sit"
            total, count, err = _quiet_build(out, [tmp / "photo"])
            self.assertIn(f"Warning: resource fork size mismatch for {tmp / 'photo'}", err)
            self.assertEqual(1, count)
            self.assertEqual(out.stat().st_size, total)
            (entry,) = _entries(out)
            self.assertEqual(30, entry.header.sec_orig_len)
            self.assertEqual(crc16(b"R" * 30), entry.header.sec_crc)
            with ArchiveReader(str(out)) as reader:
                self.assertEqual(b"R" * 30, reader.read_fork(entry, "rsrc"))
                self.assertEqual(b"image data", reader.read_fork(entry, "data"))
                self.assertTrue(reader.verify())

        self.run_with_tmpdir(scenario)

    def test_oversized_fork_is_skipped(self):
        def scenario(tmp: Path):
            (tmp / "huge").write_bytes(b"stand-in")
            (tmp / "small").write_bytes(b"small")
            out = tmp / "out.sit"

            def oversized_encode(source, f, **kwargs):
                f.write(b"z" * 50)
                return EncodedFork(METHOD_NONE, MAX_FORK_LEN + 1, MAX_FORK_LEN + 1, 0)

            err = io.StringIO()
            with contextlib.redirect_stderr(err):
                with ArchiveWriter(str(out)) as w:
                    real = w.encoder.encode
                    w.encoder.encode = oversized_encode
                    res = w.add_item(str(tmp / "huge"))
                    w.encoder.encode = real
                    w.add_item(str(tmp / "small"))
                    total, count = w.finalize()
            self.assertEqual(0, res.stored)
            self.assertIn("huge: fork exceeds", err.getvalue())
            self.assertEqual((22 + 112 + 5, 1), (total, count))
            self.assertEqual(total, out.stat().st_size)
            self.assertEqual(["small"], [e.name for e in _entries(out)])

        self.run_with_tmpdir(scenario)

    def test_unwritable_output(self):
        def scenario(tmp: Path):
            with self.assertRaises(ArchiveOutputError):
                build_archive(str(tmp / "no" / "such" / "dir.sit"), [])

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
