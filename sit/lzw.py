"""
LZW codec compatible with Unix compress(1), which is what StuffIt calls
method 2. Codes start at 9 bits and grow to ``max_bits``; in block mode code
256 clears the table once the compression ratio starts to drop.

Codes are packed LSB-first in groups of ``n_bits`` bytes (eight codes per
group). Whenever the code width changes or the table is cleared, the
current group is padded out to its full size, because decoders read a whole
group before they notice the change.
"""

from __future__ import annotations

from .constants import LZW_BLOCK_MODE, LZW_HEADER_SIZE, LZW_MAGIC, LZW_MAX_BITS

INIT_BITS = 9
CLEAR = 256
FIRST = 257
CHECK_GAP = 10000  # ratio check interval once the table is full


def _maxcode(n_bits: int) -> int:
    return (1 << n_bits) - 1


class LZWCompressor:
    """Incremental compressor; mirrors ``zlib.compressobj``.

    Output includes the 3-byte compress(1) magic header.
    """

    def __init__(self, max_bits: int = LZW_MAX_BITS, block_mode: bool = True):
        if not INIT_BITS <= max_bits <= 16:
            raise ValueError(f"max_bits must be between {INIT_BITS} and 16")
        self.max_bits = max_bits
        self.block_mode = block_mode
        self.maxmaxcode = 1 << max_bits
        self.n_bits = INIT_BITS
        self.maxcode = _maxcode(INIT_BITS)
        self.free_ent = FIRST if block_mode else CLEAR
        self._table: dict = {}
        self._ent = -1
        self._started = False
        self._finished = False
        self._clear_flg = False
        self._ratio = 0
        self._checkpoint = CHECK_GAP
        self.in_count = 0
        self.bytes_out = LZW_HEADER_SIZE
        # pending group bits
        self._buf = 0
        self._offset = 0

    def _output(self, code: int, out: bytearray) -> None:
        self._buf |= code << self._offset
        self._offset += self.n_bits
        if self._offset == self.n_bits << 3:
            out += self._buf.to_bytes(self.n_bits, "little")
            self.bytes_out += self.n_bits
            self._buf = 0
            self._offset = 0
        if self.free_ent > self.maxcode or self._clear_flg:
            if self._offset > 0:
                out += self._buf.to_bytes(self.n_bits, "little")
                self.bytes_out += self.n_bits
            self._buf = 0
            self._offset = 0
            if self._clear_flg:
                self.n_bits = INIT_BITS
                self.maxcode = _maxcode(INIT_BITS)
                self._clear_flg = False
            else:
                self.n_bits += 1
                if self.n_bits == self.max_bits:
                    self.maxcode = self.maxmaxcode
                else:
                    self.maxcode = _maxcode(self.n_bits)

    def _cl_block(self, out: bytearray) -> None:
        self._checkpoint = self.in_count + CHECK_GAP
        if self.in_count > 0x007FFFFF:
            rat = self.bytes_out >> 8
            rat = 0x7FFFFFFF if rat == 0 else self.in_count // rat
        else:
            rat = (self.in_count << 8) // self.bytes_out
        if rat > self._ratio:
            self._ratio = rat
        else:
            self._ratio = 0
            self._table.clear()
            self.free_ent = FIRST
            self._clear_flg = True
            self._output(CLEAR, out)

    def compress(self, data: bytes) -> bytes:
        if self._finished:
            raise RuntimeError("compressor already flushed")
        out = bytearray()
        if not self._started:
            out += LZW_MAGIC + bytes([self.max_bits | (LZW_BLOCK_MODE if self.block_mode else 0)])
            self._started = True
        if not data:
            return bytes(out)
        start = 0
        if self._ent < 0:
            self._ent = data[0]
            self.in_count = 1
            start = 1
        table = self._table
        ent = self._ent
        for c in data[start:]:
            self.in_count += 1
            key = (ent << 8) | c
            code = table.get(key)
            if code is not None:
                ent = code
                continue
            self._output(ent, out)
            ent = c
            if self.free_ent < self.maxmaxcode:
                table[key] = self.free_ent
                self.free_ent += 1
            elif self.in_count >= self._checkpoint and self.block_mode:
                self._cl_block(out)
        self._ent = ent
        return bytes(out)

    def flush(self) -> bytes:
        if self._finished:
            return b""
        out = bytearray()
        if not self._started:
            out += self.compress(b"")
        if self._ent >= 0:
            self._output(self._ent, out)
        if self._offset > 0:
            nbytes = (self._offset + 7) // 8
            out += self._buf.to_bytes(self.n_bits, "little")[:nbytes]
            self.bytes_out += nbytes
        self._buf = 0
        self._offset = 0
        self._finished = True
        return bytes(out)


def compress(data: bytes, max_bits: int = LZW_MAX_BITS) -> bytes:
    c = LZWCompressor(max_bits)
    return c.compress(data) + c.flush()


def decompress_body(data: bytes, max_bits: int = LZW_MAX_BITS, block_mode: bool = True) -> bytes:
    """Decode a headerless LZW code stream (the form StuffIt stores)."""
    maxmaxcode = 1 << max_bits
    prefix = [0] * maxmaxcode
    suffix = list(range(256)) + [0] * (maxmaxcode - 256)
    n_bits = INIT_BITS
    maxcode = _maxcode(n_bits)
    free_ent = FIRST if block_mode else CLEAR
    clear_flg = False
    pos = 0
    group = 0
    roffset = 0
    size = 0
    oldcode = -1
    finchar = 0
    out = bytearray()
    while True:
        if clear_flg or roffset >= size or free_ent > maxcode:
            if free_ent > maxcode:
                n_bits += 1
                maxcode = maxmaxcode if n_bits == max_bits else _maxcode(n_bits)
            if clear_flg:
                n_bits = INIT_BITS
                maxcode = _maxcode(n_bits)
                clear_flg = False
            chunk = data[pos : pos + n_bits]
            pos += n_bits
            if not chunk:
                break
            group = int.from_bytes(chunk, "little")
            roffset = 0
            size = (len(chunk) << 3) - (n_bits - 1)
            if size <= 0:
                break
        code = (group >> roffset) & _maxcode(n_bits)
        roffset += n_bits

        if code == CLEAR and block_mode:
            clear_flg = True
            free_ent = FIRST
            oldcode = -1
            continue
        incode = code
        stack = bytearray()
        if code >= free_ent:
            if code > free_ent or oldcode == -1:
                raise ValueError("corrupt LZW stream")
            stack.append(finchar)
            code = oldcode
        while code >= 256:
            stack.append(suffix[code])
            code = prefix[code]
        finchar = suffix[code]
        stack.append(finchar)
        stack.reverse()
        out += stack
        if free_ent < maxmaxcode and oldcode != -1:
            prefix[free_ent] = oldcode
            suffix[free_ent] = finchar
            free_ent += 1
        oldcode = incode
    return bytes(out)


def decompress(data: bytes) -> bytes:
    """Decode a complete compress(1) stream, header included."""
    if len(data) < LZW_HEADER_SIZE or data[:2] != LZW_MAGIC:
        raise ValueError("not a compress(1) stream")
    flags = data[2]
    return decompress_body(data[LZW_HEADER_SIZE:], flags & 0x1F, bool(flags & LZW_BLOCK_MODE))
