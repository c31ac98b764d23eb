from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

from . import lzw
from .constants import (
    ARCHIVE_HEADER_SIZE,
    ITEM_HEADER_SIZE,
    LZW_MAX_BITS,
    METHOD_ENCRYPTED,
    METHOD_HUFFMAN,
    METHOD_LZW,
    METHOD_NONE,
    METHOD_RLE,
)
from .crc16 import crc16
from .errors import TruncatedArchiveError, UnsupportedMethodError
from .macroman import pascal_to_str
from .records import ArchiveHeader, ItemHeader

# Known to StuffIt but never produced here
_UNSUPPORTED = {METHOD_RLE: "RLE", METHOD_HUFFMAN: "Huffman"}


@dataclass
class Entry:
    offset: int  # of the item header
    depth: int  # folder nesting level
    header: ItemHeader

    @property
    def name(self) -> str:
        return pascal_to_str(self.header.name)

    @property
    def kind(self) -> str:
        if self.header.is_folder_start:
            return "folder"
        if self.header.is_folder_end:
            return "end"
        return "file"

    @property
    def rsrc_offset(self) -> int:
        return self.offset + ITEM_HEADER_SIZE

    @property
    def data_offset(self) -> int:
        return self.rsrc_offset + self.stored_rsrc

    @property
    def stored_rsrc(self) -> int:
        return 0 if self.kind != "file" else self.header.sec_stored_len

    @property
    def stored_data(self) -> int:
        return 0 if self.kind != "file" else self.header.prim_stored_len


def read_exact(f: BinaryIO, n: int) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise TruncatedArchiveError("Unexpected EOF")
    return b


def decode_fork(raw: bytes, method: int) -> bytes:
    if method & METHOD_ENCRYPTED:
        raise UnsupportedMethodError("encrypted forks are not supported")
    if method == METHOD_NONE:
        return raw
    if method == METHOD_LZW:
        return lzw.decompress_body(raw, LZW_MAX_BITS)
    label = _UNSUPPORTED.get(method, "unknown")
    raise UnsupportedMethodError(f"unsupported compression method {method} ({label})")


class ArchiveReader:
    """Walks the headers of a StuffIt archive. Does not extract."""

    def __init__(self, path: str):
        self.path = path
        self.f: Optional[BinaryIO] = None
        self.header: Optional[ArchiveHeader] = None
        self.entries: List[Entry] = []
        self.size = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.path, "rb")
        try:
            self.header = ArchiveHeader.unpack(read_exact(self.f, ARCHIVE_HEADER_SIZE))
            self._load_entries()
        except Exception:
            self.close()
            raise

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def list(self) -> List[Entry]:
        return self.entries

    def _load_entries(self):
        f = self.f
        f.seek(0, 2)
        end = self.size = f.tell()
        pos = ARCHIVE_HEADER_SIZE
        depth = 0
        while pos < end:
            f.seek(pos)
            hdr = ItemHeader.unpack(read_exact(f, ITEM_HEADER_SIZE))
            if hdr.is_folder_end:
                depth -= 1
            entry = Entry(offset=pos, depth=depth, header=hdr)
            self.entries.append(entry)
            if hdr.is_folder_start:
                depth += 1
            pos += ITEM_HEADER_SIZE + entry.stored_rsrc + entry.stored_data
        if pos != end:
            raise TruncatedArchiveError("last item extends past end of archive")

    def read_fork(self, entry: Entry, which: str) -> bytes:
        """Decoded contents of ``which`` ("rsrc" or "data")."""
        if which == "rsrc":
            offset, size, method = entry.rsrc_offset, entry.stored_rsrc, entry.header.sec_method
        else:
            offset, size, method = entry.data_offset, entry.stored_data, entry.header.prim_method
        if size == 0:
            return b""
        self.f.seek(offset)
        return decode_fork(read_exact(self.f, size), method)

    def verify(self) -> bool:
        """Check archive totals, folder nesting, and every fork's length and CRC."""
        ok = True
        if self.header.total_len != self.size:
            print(f"Archive length {self.header.total_len} does not match file size {self.size}", file=sys.stderr)
            ok = False
        stack: List[Entry] = []
        for e in self.entries:
            h = e.header
            if e.kind == "folder":
                stack.append(e)
                continue
            if e.kind == "end":
                if not stack:
                    print(f"Unbalanced folder end at offset {e.offset}", file=sys.stderr)
                    ok = False
                    continue
                start = stack.pop()
                span = e.offset - start.offset
                if h.prim_stored_len != span or start.header.prim_stored_len != span:
                    print(f"Folder {start.name}: length {start.header.prim_stored_len} != {span}", file=sys.stderr)
                    ok = False
                continue
            for which, orig, crc in (("rsrc", h.sec_orig_len, h.sec_crc), ("data", h.prim_orig_len, h.prim_crc)):
                try:
                    body = self.read_fork(e, which)
                except (ValueError, UnsupportedMethodError) as exc:
                    print(f"{e.name} ({which}): {exc}", file=sys.stderr)
                    ok = False
                    continue
                if len(body) != orig or crc16(body) != crc:
                    print(f"{e.name} ({which}): length or CRC mismatch", file=sys.stderr)
                    ok = False
        if stack:
            print(f"Unterminated folder {stack[-1].name}", file=sys.stderr)
            ok = False
        return ok
