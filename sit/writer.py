from __future__ import annotations

import os
import stat
import sys
from dataclasses import dataclass
from typing import BinaryIO, Callable, Iterable, Optional, Tuple

from .codec import ForkEncoder
from .constants import (
    ARCHIVE_HEADER_SIZE,
    DEFAULT_CREATOR,
    DEFAULT_TYPE,
    IGNORED_NAMES,
    ITEM_HEADER_SIZE,
    MAX_FORK_LEN,
    MAX_NAME_LEN,
    MAX_PATH_BYTES,
    METHOD_FOLDER_END,
    METHOD_FOLDER_START,
)
from .errors import ArchiveOutputError, ForkTooLargeError, ItemError, NoForksError
from .forks import mac_dates, resolve_forks
from .macroman import to_mac_roman
from .records import ArchiveHeader, ItemHeader, Reservation


@dataclass
class ArchiveOptions:
    compress: bool = True
    convert_newlines: bool = False
    default_type: bytes = DEFAULT_TYPE
    default_creator: bytes = DEFAULT_CREATOR
    verbose: int = 0


@dataclass
class ItemResult:
    stored: int = 0  # bytes this item occupies in the archive
    uncompressed: int = 0  # the same, with every fork at its original size
    entries: int = 0  # item headers written, folder brackets included


_NOTHING = ItemResult()


def _fourcc(code: bytes) -> str:
    return code.decode("mac_roman")


class ArchiveWriter:
    """Builds a StuffIt 1.5.1 archive in a single pass over the inputs.

    Lengths that are only known after a record's contents are written (the
    archive header, each file header, each folder's start marker) are
    reserved up front and patched in place afterwards.
    """

    def __init__(self, out_path: str, options: Optional[ArchiveOptions] = None):
        self.out_path = out_path
        self.options = options or ArchiveOptions()
        self.f: Optional[BinaryIO] = None
        self.encoder = ForkEncoder(compress=self.options.compress)
        self.num_items = 0
        self.total_stored = 0
        self.total_uncompressed = 0
        self._header: Optional[Reservation] = None
        self._out_stat: Optional[os.stat_result] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        if self.options.verbose:
            print(f'Creating archive file "{self.out_path}"')
        try:
            self.f = open(self.out_path, "w+b")
            self._out_stat = os.fstat(self.f.fileno())
            # empty header, patched by finalize()
            self._header = Reservation(self.f, bytes(ARCHIVE_HEADER_SIZE))
        except OSError as exc:
            raise ArchiveOutputError(f"cannot create archive {self.out_path}: {exc}") from exc
        self._say(3, 0, f"* archive header ({ARCHIVE_HEADER_SIZE} bytes)")

    def close(self):
        if self.f is not None:
            try:
                self.f.close()
            except OSError as exc:
                raise ArchiveOutputError(f"error closing archive: {exc}") from exc
            finally:
                self.f = None

    def add_item(self, path: str) -> ItemResult:
        """Archive a top-level file or directory.

        Items that cannot be archived are reported on stderr and leave no
        trace in the output; they do not count towards ``num_items``, which totals every
        header written (files and both brackets of each folder).
        """
        if self.f is None:
            raise RuntimeError("Archive not open")
        res = self._put_item(path, level=0)
        if res.stored:
            self.num_items += res.entries
            self.total_stored += res.stored
            self.total_uncompressed += res.uncompressed
        return res

    def finalize(self) -> Tuple[int, int]:
        """Rewrite the archive header with the final count and length.

        Returns ``(total_bytes, item_count)``.
        """
        if self.f is None or self._header is None:
            raise RuntimeError("Archive not open")
        total = self.total_stored + ARCHIVE_HEADER_SIZE
        uncompressed = self.total_uncompressed + ARCHIVE_HEADER_SIZE
        try:
            self._header.commit(ArchiveHeader(num_items=self.num_items, total_len=total).pack())
            self.f.flush()
        except OSError as exc:
            raise ArchiveOutputError(f"cannot write final archive header: {exc}") from exc
        if self.options.verbose:
            print(f'Wrote {total} bytes to "{self.out_path}"')
            if self.options.verbose > 2:
                print(f"Compressed: {total} bytes, Uncompressed: {uncompressed} bytes")
            print(f"Savings: {100 - (total * 100) // uncompressed}%")
        return total, self.num_items

    # internals
    def _say(self, level: int, depth: int, msg: str):
        if self.options.verbose >= level:
            print("  " * depth + msg)

    def _is_output(self, st: os.stat_result) -> bool:
        out = self._out_stat
        return out is not None and st.st_ino == out.st_ino and st.st_dev == out.st_dev

    def _report(self, path: str, exc: BaseException):
        msg = exc.strerror if isinstance(exc, OSError) and exc.strerror else str(exc)
        print(f"{path}: {msg}", file=sys.stderr)

    def _guarded(self, path: str, put: Callable[[str, int], ItemResult], level: int) -> ItemResult:
        """Run one item's encoder; on failure report it and truncate the
        output back to where the item started."""
        mark = Reservation(self.f, b"")
        try:
            return put(path, level)
        except (ItemError, OSError) as exc:
            self._report(path, exc)
            try:
                mark.rollback()
            except OSError as exc2:
                raise ArchiveOutputError(f"cannot roll back archive after {path}: {exc2}") from exc2
            return _NOTHING

    def _put_item(self, path: str, level: int) -> ItemResult:
        try:
            st = os.lstat(path)
        except OSError:
            # may still exist as sidecars only (name.data, name.rsrc)
            st = None
        if st is not None and self._is_output(st):
            print(f"{path}: is the archive being written, skipped", file=sys.stderr)
            return _NOTHING
        if st is not None and stat.S_ISDIR(st.st_mode):
            self._say(2, level, f"+ {os.path.basename(path.rstrip(os.sep)) or path} (directory)")
            return self._guarded(path, self._put_folder, level)
        self._say(2, level, f"+ {path}")
        return self._guarded(path, self._put_file, level)

    def _put_folder(self, path: str, level: int) -> ItemResult:
        st = os.stat(path)
        children = sorted(os.listdir(path))
        fname = os.path.basename(path.rstrip(os.sep)) or path
        cdate, mdate = mac_dates(st)
        start_hdr = ItemHeader(
            sec_method=METHOD_FOLDER_START,
            prim_method=METHOD_FOLDER_START,
            name=to_mac_roman(fname, MAX_NAME_LEN),
            cdate=cdate,
            mdate=mdate,
        )
        start = Reservation(self.f, start_hdr.pack())
        self._say(3, level, f"* startFolder for {fname} ({ITEM_HEADER_SIZE} bytes)")
        uncompressed = ITEM_HEADER_SIZE
        entries = 2

        for child in children:
            if child in (".", ".."):
                continue
            child_path = os.path.join(path, child)
            if len(os.fsencode(child_path)) >= MAX_PATH_BYTES:
                print(f"Warning: path too long, skipping: {child_path}", file=sys.stderr)
                continue
            try:
                cst = os.lstat(child_path)
            except OSError as exc:
                self._report(child_path, exc)
                continue
            if self._is_output(cst):
                self._say(2, level + 1, f"! {child} (archive being written, skipped)")
                continue
            if stat.S_ISDIR(cst.st_mode):
                self._say(2, level + 1, f"+ {child} (directory)")
                res = self._guarded(child_path, self._put_folder, level + 1)
            else:
                if child in IGNORED_NAMES:
                    self._say(2, level + 1, f"! {child} (skipped)")
                    continue
                self._say(2, level + 1, f"+ {child}")
                res = self._guarded(child_path, self._put_file, level + 1)
            uncompressed += res.uncompressed
            entries += res.entries

        # Distance between the two markers' starts, i.e. everything after the
        # start marker up to and including the end marker.
        span = start.span()
        end_hdr = ItemHeader(
            sec_method=METHOD_FOLDER_END,
            prim_method=METHOD_FOLDER_END,
            name=start_hdr.name,
            cdate=cdate,
            mdate=mdate,
            sec_orig_len=uncompressed,
            prim_orig_len=uncompressed,
            sec_stored_len=span,
            prim_stored_len=span,
        )
        self.f.write(end_hdr.pack())
        self._say(3, level, f"* endFolder for {fname} ({ITEM_HEADER_SIZE} bytes)")
        self._say(3, level, f"* compressed:{span}, uncompressed:{uncompressed}")
        start.commit(end_hdr.with_methods(METHOD_FOLDER_START).pack())
        return ItemResult(
            stored=span + ITEM_HEADER_SIZE, uncompressed=uncompressed + ITEM_HEADER_SIZE, entries=entries
        )

    def _put_file(self, path: str, level: int) -> ItemResult:
        opts = self.options
        forks = resolve_forks(path, default_type=opts.default_type, default_creator=opts.default_creator)
        if forks is None:
            raise NoForksError("no data or resource files")
        meta = forks.meta
        reservation = Reservation(self.f, bytes(ITEM_HEADER_SIZE))
        self._say(3, level, f"* file header ({ITEM_HEADER_SIZE} bytes)")
        hdr = ItemHeader(
            name=meta.name,
            ftype=meta.ftype,
            creator=meta.creator,
            flags=meta.flags,
            cdate=meta.cdate,
            mdate=meta.mdate,
        )
        rlen = dlen = 0
        rstored = dstored = 0
        if forks.rsrc is not None:
            enc = self.encoder.encode(forks.rsrc, self.f)
            if enc.original_length != forks.rsrc.length:
                print(f"Warning: resource fork size mismatch for {path}", file=sys.stderr)
            rlen, rstored = enc.original_length, enc.stored_length
            hdr.sec_method = enc.method
            hdr.sec_orig_len = rlen
            hdr.sec_stored_len = rstored
            hdr.sec_crc = enc.crc
        if forks.data is not None:
            enc = self.encoder.encode(forks.data, self.f, convert_newlines=opts.convert_newlines)
            dlen, dstored = enc.original_length, enc.stored_length
            hdr.prim_method = enc.method
            hdr.prim_orig_len = dlen
            hdr.prim_stored_len = dstored
            hdr.prim_crc = enc.crc
        if rlen + dlen == 0:
            raise NoForksError("no data or resource files")
        if max(rlen, dlen, rstored, dstored) > MAX_FORK_LEN:
            raise ForkTooLargeError(f"fork exceeds {MAX_FORK_LEN} bytes")

        reservation.commit(hdr.pack())
        if opts.verbose:
            depth = level if opts.verbose > 1 else 0
            self._say(
                1,
                depth,
                f"{path} ({dlen + rlen} bytes) Data:{dlen} Rsrc:{rlen} "
                f"[{_fourcc(meta.ftype)}/{_fourcc(meta.creator)}]",
            )
            self._say(
                3,
                depth,
                f"Savings: {100 - ((dstored + rstored) * 100) // (dlen + rlen)}% "
                f"({dstored + rstored}/{dlen + rlen} bytes) "
                f"Data:{dstored}/{dlen} Rsrc:{rstored}/{rlen}",
            )
        return ItemResult(stored=reservation.span(), uncompressed=rlen + dlen + ITEM_HEADER_SIZE, entries=1)


def build_archive(output_path: str, items: Iterable[str], options: Optional[ArchiveOptions] = None) -> Tuple[int, int]:
    """Create ``output_path`` from ``items``; returns ``(total_bytes, item_count)``."""
    with ArchiveWriter(output_path, options) as w:
        for item in items:
            w.add_item(item)
        return w.finalize()
