from __future__ import annotations

import struct
from dataclasses import dataclass, replace
from typing import BinaryIO

from .constants import (
    ARCHIVE_HEADER_SIZE,
    ITEM_HEADER_CRC_SPAN,
    ITEM_HEADER_SIZE,
    METHOD_FOLDER_END,
    METHOD_FOLDER_START,
    SIT_MAGIC,
    SIT_MAGIC2,
    SIT_VERSION,
)
from .crc16 import crc16
from .errors import BadSignatureError, HeaderChecksumError


# Archive header (22 bytes), big endian:
#  sig1[4] "SIT!", num_items u16, total_len u32, sig2[4] "rLau", version u8, reserved[7]
_ARCHIVE_HDR_STRUCT = struct.Struct(">4sHI4sB7s")

# Item header (112 bytes), big endian:
#  sec_method u8, prim_method u8, name[64] (Pascal string), type[4], creator[4],
#  flags u16, cdate u32, mdate u32,
#  sec_orig_len u32, prim_orig_len u32, sec_stored_len u32, prim_stored_len u32,
#  sec_crc u16, prim_crc u16, reserved[6], header_crc u16
_ITEM_HDR_STRUCT = struct.Struct(">BB64s4s4sHIIIIIIHH6sH")

assert _ARCHIVE_HDR_STRUCT.size == ARCHIVE_HEADER_SIZE
assert _ITEM_HDR_STRUCT.size == ITEM_HEADER_SIZE


def header_checksum(raw: bytes, length: int) -> int:
    """CRC-16 over the first ``length`` bytes of a serialized record."""
    if length > len(raw):
        raise ValueError("checksum span exceeds record length")
    return crc16(raw[:length])


@dataclass
class ArchiveHeader:
    num_items: int
    total_len: int
    version: int = SIT_VERSION

    def pack(self) -> bytes:
        return _ARCHIVE_HDR_STRUCT.pack(
            SIT_MAGIC, self.num_items & 0xFFFF, self.total_len & 0xFFFFFFFF, SIT_MAGIC2, self.version, b"\x00" * 7
        )

    @classmethod
    def unpack(cls, raw: bytes) -> "ArchiveHeader":
        if len(raw) != ARCHIVE_HEADER_SIZE:
            raise ValueError("Archive header too short")
        sig1, num_items, total_len, sig2, version, _reserved = _ARCHIVE_HDR_STRUCT.unpack(raw)
        if sig1 != SIT_MAGIC or sig2 != SIT_MAGIC2:
            raise BadSignatureError("Not a StuffIt archive (bad signature)")
        return cls(num_items=num_items, total_len=total_len, version=version)


@dataclass
class ItemHeader:
    sec_method: int = 0
    prim_method: int = 0
    name: bytes = b"\x00"
    ftype: bytes = b"\x00" * 4
    creator: bytes = b"\x00" * 4
    flags: int = 0
    cdate: int = 0
    mdate: int = 0
    sec_orig_len: int = 0
    prim_orig_len: int = 0
    sec_stored_len: int = 0
    prim_stored_len: int = 0
    sec_crc: int = 0
    prim_crc: int = 0
    header_crc: int = 0

    @property
    def is_folder_start(self) -> bool:
        return self.prim_method == METHOD_FOLDER_START

    @property
    def is_folder_end(self) -> bool:
        return self.prim_method == METHOD_FOLDER_END

    def pack(self) -> bytes:
        """Serialize, filling the trailing header CRC."""
        if len(self.name) > 64:
            raise ValueError("name field exceeds 64 bytes")
        pre = _ITEM_HDR_STRUCT.pack(
            self.sec_method,
            self.prim_method,
            self.name,
            self.ftype,
            self.creator,
            self.flags & 0xFFFF,
            self.cdate & 0xFFFFFFFF,
            self.mdate & 0xFFFFFFFF,
            self.sec_orig_len,
            self.prim_orig_len,
            self.sec_stored_len,
            self.prim_stored_len,
            self.sec_crc,
            self.prim_crc,
            b"\x00" * 6,
            0,  # crc placeholder
        )
        crc = header_checksum(pre, ITEM_HEADER_CRC_SPAN)
        return pre[:ITEM_HEADER_CRC_SPAN] + struct.pack(">H", crc)

    @classmethod
    def unpack(cls, raw: bytes, *, verify: bool = True) -> "ItemHeader":
        if len(raw) != ITEM_HEADER_SIZE:
            raise ValueError("Item header too short")
        fields = _ITEM_HDR_STRUCT.unpack(raw)
        hdr = cls(
            sec_method=fields[0],
            prim_method=fields[1],
            name=fields[2],
            ftype=fields[3],
            creator=fields[4],
            flags=fields[5],
            cdate=fields[6],
            mdate=fields[7],
            sec_orig_len=fields[8],
            prim_orig_len=fields[9],
            sec_stored_len=fields[10],
            prim_stored_len=fields[11],
            sec_crc=fields[12],
            prim_crc=fields[13],
            header_crc=fields[15],
        )
        if verify and header_checksum(raw, ITEM_HEADER_CRC_SPAN) != hdr.header_crc:
            raise HeaderChecksumError("Item header CRC mismatch")
        return hdr

    def with_methods(self, method: int) -> "ItemHeader":
        """Copy with both fork methods set to ``method`` (folder brackets)."""
        return replace(self, sec_method=method, prim_method=method)


class Reservation:
    """A placeholder written to the output, to be overwritten once its
    contents are known.

    The output cursor is left after the placeholder; ``commit`` patches the
    reserved bytes in place and restores the cursor, ``rollback`` discards
    the placeholder and everything written after it.
    """

    def __init__(self, f: BinaryIO, placeholder: bytes):
        self.f = f
        self.offset = f.tell()
        self.size = len(placeholder)
        f.write(placeholder)

    def commit(self, data: bytes) -> None:
        if len(data) != self.size:
            raise ValueError(f"reservation holds {self.size} bytes, got {len(data)}")
        end = self.f.tell()
        self.f.seek(self.offset)
        self.f.write(data)
        self.f.seek(end)

    def rollback(self) -> None:
        self.f.seek(self.offset)
        self.f.truncate()

    def span(self) -> int:
        """Bytes written from the start of the reservation to the cursor."""
        return self.f.tell() - self.offset
