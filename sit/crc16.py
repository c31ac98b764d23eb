"""
CRC-16/ARC (reflected 0x8005, init 0) as used by StuffIt for fork and
header checksums. Table driven, pure Python.
"""

_POLY = 0xA001


def _make_table():
    tbl = []
    for n in range(256):
        c = n
        for _ in range(8):
            if c & 1:
                c = (c >> 1) ^ _POLY
            else:
                c >>= 1
        tbl.append(c & 0xFFFF)
    return tuple(tbl)


_TABLE = _make_table()


def crc16(data: bytes, crc: int = 0) -> int:
    c = crc & 0xFFFF
    for b in data:
        c = _TABLE[(c ^ b) & 0xFF] ^ (c >> 8)
    return c
