from __future__ import annotations

import contextlib
import os
import tempfile
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

from .constants import BUFSIZE, LZW_HEADER_SIZE, LZW_MAX_BITS, METHOD_LZW, METHOD_NONE
from .crc16 import crc16
from .forks import ForkSource
from .lzw import LZWCompressor


@dataclass
class EncodedFork:
    method: int
    original_length: int
    stored_length: int
    crc: int


def _discard(path: str) -> None:
    # Temp files may already be gone; that is not an error
    with contextlib.suppress(OSError):
        os.unlink(path)


def _copy_span(src: BinaryIO, out: BinaryIO, bufsize: int) -> int:
    n = 0
    while True:
        chunk = src.read(bufsize)
        if not chunk:
            return n
        out.write(chunk)
        n += len(chunk)


class ForkEncoder:
    """Writes one fork to the archive, LZW-compressed when that pays off.

    The CRC always covers the uncompressed bytes, after any newline
    conversion, since that is what an extractor reproduces.
    """

    def __init__(self, compress: bool = True, max_bits: int = LZW_MAX_BITS, bufsize: int = BUFSIZE):
        self.compress = compress
        self.max_bits = max_bits
        self.bufsize = bufsize

    def encode(self, source: ForkSource, out: BinaryIO, *, convert_newlines: bool = False) -> EncodedFork:
        staged: List[str] = []

        def _stage(prefix: str) -> BinaryIO:
            fd, p = tempfile.mkstemp(prefix=prefix)
            staged.append(p)
            return os.fdopen(fd, "wb")

        try:
            cvt_path: Optional[str] = None
            cmp_path: Optional[str] = None
            cvt_f = _stage("sit+cvt-") if convert_newlines else None
            if cvt_f is not None:
                cvt_path = staged[-1]
            cmp_f = _stage("sit+cmp-") if self.compress else None
            if cmp_f is not None:
                cmp_path = staged[-1]
            compressor = LZWCompressor(self.max_bits) if self.compress else None

            crc = 0
            length = 0
            try:
                for chunk in source.iter_chunks(self.bufsize):
                    if cvt_f is not None:
                        chunk = chunk.replace(b"\n", b"\r")
                        cvt_f.write(chunk)
                    crc = crc16(chunk, crc)
                    length += len(chunk)
                    if compressor is not None:
                        cmp_f.write(compressor.compress(chunk))
                if compressor is not None:
                    cmp_f.write(compressor.flush())
            finally:
                if cvt_f is not None:
                    cvt_f.close()
                if cmp_f is not None:
                    cmp_f.close()

            if cmp_path is not None and os.path.getsize(cmp_path) - LZW_HEADER_SIZE < length:
                with open(cmp_path, "rb") as cf:
                    cf.seek(LZW_HEADER_SIZE)
                    stored = _copy_span(cf, out, self.bufsize)
                return EncodedFork(METHOD_LZW, length, stored, crc)

            if cvt_path is not None:
                with open(cvt_path, "rb") as vf:
                    stored = _copy_span(vf, out, self.bufsize)
            else:
                stored = 0
                for chunk in source.iter_chunks(self.bufsize):
                    out.write(chunk)
                    stored += len(chunk)
            return EncodedFork(METHOD_NONE, length, stored, crc)
        finally:
            for p in staged:
                _discard(p)
