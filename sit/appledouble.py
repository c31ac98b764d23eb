"""
Read-only access to AppleDouble sidecar files (``._name``), which carry a
file's resource fork and Finder info on filesystems without native forks.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .constants import (
    AD_ENTRY_FINDER_INFO,
    AD_ENTRY_RESOURCE_FORK,
    APPLEDOUBLE_MAGIC,
    APPLEDOUBLE_PREFIX,
    FINDER_INFO_MIN_SIZE,
    RSRC_SUFFIX,
)

# magic u32, version u32, filler[16], entry count u16
_AD_HEADER = struct.Struct(">II16sH")
# entry id u32, offset u32, length u32
_AD_ENTRY = struct.Struct(">III")


@dataclass
class ADEntry:
    entry_id: int
    offset: int
    length: int


@dataclass
class FinderInfo:
    ftype: bytes
    creator: bytes
    flags: int


def sidecar_candidates(path: str) -> Tuple[str, str]:
    """``._name`` beside the file, then the legacy ``name.rsrc``."""
    head, base = os.path.split(path)
    return os.path.join(head, APPLEDOUBLE_PREFIX + base), path + RSRC_SUFFIX


def read_entries(f) -> Optional[Dict[int, ADEntry]]:
    """Parse the header and entry directory, or None if ``f`` is not AppleDouble."""
    f.seek(0)
    raw = f.read(_AD_HEADER.size)
    if len(raw) != _AD_HEADER.size:
        return None
    magic, _version, _filler, count = _AD_HEADER.unpack(raw)
    if magic != APPLEDOUBLE_MAGIC:
        return None
    entries: Dict[int, ADEntry] = {}
    for _ in range(count):
        raw = f.read(_AD_ENTRY.size)
        if len(raw) != _AD_ENTRY.size:
            return None
        entry_id, offset, length = _AD_ENTRY.unpack(raw)
        entries.setdefault(entry_id, ADEntry(entry_id, offset, length))
    return entries


def find_sidecar(path: str) -> Optional[Tuple[str, Dict[int, ADEntry]]]:
    """Return the first sidecar candidate that parses as AppleDouble."""
    for candidate in sidecar_candidates(path):
        if not os.path.isfile(candidate):
            continue
        with open(candidate, "rb") as f:
            entries = read_entries(f)
        if entries is not None:
            return candidate, entries
    return None


def find_resource_fork(path: str) -> Optional[Tuple[str, ADEntry]]:
    found = find_sidecar(path)
    if found is None:
        return None
    sidecar, entries = found
    entry = entries.get(AD_ENTRY_RESOURCE_FORK)
    if entry is None:
        return None
    return sidecar, entry


def read_finder_info(path: str) -> Optional[FinderInfo]:
    found = find_sidecar(path)
    if found is None:
        return None
    sidecar, entries = found
    entry = entries.get(AD_ENTRY_FINDER_INFO)
    if entry is None or entry.length < FINDER_INFO_MIN_SIZE:
        return None
    with open(sidecar, "rb") as f:
        f.seek(entry.offset)
        raw = f.read(FINDER_INFO_MIN_SIZE)
    if len(raw) != FINDER_INFO_MIN_SIZE:
        return None
    # FInfo: fdType[4], fdCreator[4], fdFlags u16, ...
    (flags,) = struct.unpack(">H", raw[8:10])
    return FinderInfo(ftype=raw[0:4], creator=raw[4:8], flags=flags)
