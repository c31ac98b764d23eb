from __future__ import annotations

import os
import stat
import struct
import sys
import time
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence

from . import appledouble
from .constants import (
    BUFSIZE,
    DATA_SUFFIX,
    DEFAULT_CREATOR,
    DEFAULT_TYPE,
    INFO_RECORD_SIZE,
    INFO_SUFFIX,
    MAC_EPOCH_DELTA,
    MAX_NAME_LEN,
    MAX_PATH_BYTES,
    NAMED_FORK_SUFFIX,
    RESOURCE_HEADER_SIZE,
    RSRC_SUFFIX,
)
from .errors import PathTooLongError
from .macroman import to_mac_roman

# Only macOS exposes resource forks through ``file/..namedfork/rsrc``
HAVE_NAMEDFORK = sys.platform == "darwin"

# xbin .info record (MacBinary header prefix):
#  reserved[1], name[64] (Pascal), type[4], creator[4], flags u16, reserved[8],
#  data_len u32, rsrc_len u32, cdate u32, mdate u32
_INFO_STRUCT = struct.Struct(">1s64s4s4sH8sIIII")
assert _INFO_STRUCT.size == INFO_RECORD_SIZE

# Native resource fork header: Finder info copy at offsets 82/86/90
_RES_FINDER_STRUCT = struct.Struct(">4s4sH")
_RES_FINDER_OFFSET = 82


@dataclass
class ForkSource:
    """A byte span inside a file: a whole plain file or an AppleDouble entry."""

    path: str
    offset: int
    length: int
    origin: str = ""

    def iter_chunks(self, bufsize: int = BUFSIZE) -> Iterator[bytes]:
        remaining = self.length
        with open(self.path, "rb") as f:
            if self.offset:
                f.seek(self.offset)
            while remaining > 0:
                chunk = f.read(min(bufsize, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk


@dataclass
class FinderMeta:
    name: bytes
    ftype: bytes
    creator: bytes
    flags: int
    cdate: int
    mdate: int
    origin: str = ""


@dataclass
class ForkSet:
    rsrc: Optional[ForkSource]
    data: Optional[ForkSource]
    meta: FinderMeta

    @property
    def fork_count(self) -> int:
        return (self.rsrc is not None) + (self.data is not None)


def _sibling(path: str, suffix: str) -> str:
    p = path + suffix
    if len(os.fsencode(p)) >= MAX_PATH_BYTES:
        raise PathTooLongError(f"path too long: {p}")
    return p


def local_offset() -> int:
    """Seconds to add to UTC for local time, plus an hour while DST is in effect."""
    tm = time.localtime()
    return tm.tm_gmtoff + (3600 if tm.tm_isdst > 0 else 0)


def to_mac_time(unix_seconds: float, offset: Optional[int] = None) -> int:
    if offset is None:
        offset = local_offset()
    return (int(unix_seconds) + MAC_EPOCH_DELTA + offset) & 0xFFFFFFFF


def mac_dates(st: os.stat_result) -> tuple[int, int]:
    """(creation, modification) in Mac time.

    Creation prefers ``st_birthtime``; elsewhere ``st_ctime`` (inode change
    time) stands in for it.
    """
    offset = local_offset()
    created = getattr(st, "st_birthtime", None)
    if created is None:
        created = st.st_ctime
    return to_mac_time(created, offset), to_mac_time(st.st_mtime, offset)


# -------- resource fork strategies --------

def appledouble_rsrc(path: str) -> Optional[ForkSource]:
    found = appledouble.find_resource_fork(path)
    if found is None:
        return None
    sidecar, entry = found
    if entry.length == 0:
        return None
    return ForkSource(sidecar, entry.offset, entry.length, origin="appledouble")


def legacy_rsrc_file(path: str) -> Optional[ForkSource]:
    p = _sibling(path, RSRC_SUFFIX)
    try:
        st = os.stat(p)
    except OSError:
        return None
    if not stat.S_ISREG(st.st_mode) or st.st_size == 0:
        return None
    return ForkSource(p, 0, st.st_size, origin="rsrc")


def named_fork_rsrc(path: str) -> Optional[ForkSource]:
    if not HAVE_NAMEDFORK:
        return None
    p = _sibling(path, NAMED_FORK_SUFFIX)
    try:
        st = os.stat(p)
    except OSError:
        return None
    if st.st_size == 0:
        return None
    return ForkSource(p, 0, st.st_size, origin="namedfork")


RsrcResolver = Callable[[str], Optional[ForkSource]]
RSRC_RESOLVERS: Sequence[RsrcResolver] = (appledouble_rsrc, legacy_rsrc_file, named_fork_rsrc)


def resolve_data_fork(path: str) -> Optional[ForkSource]:
    """The plain file if it exists, else ``name.data``; empty forks count as absent."""
    for p in (path, _sibling(path, DATA_SUFFIX)):
        try:
            st = os.stat(p)
        except OSError:
            continue
        if not stat.S_ISREG(st.st_mode):
            continue
        if st.st_size == 0:
            return None
        return ForkSource(p, 0, st.st_size, origin="data" if p == path else "xbin-data")
    return None


# -------- metadata strategies --------

@dataclass
class MetaContext:
    path: str
    rsrc: Optional[ForkSource]
    data: Optional[ForkSource]
    default_type: bytes
    default_creator: bytes

    def base_name(self) -> bytes:
        base = os.path.basename(self.path.rstrip(os.sep)) or self.path
        return to_mac_roman(base, MAX_NAME_LEN)

    def dates(self) -> tuple[int, int]:
        candidates = []
        if self.data is not None:
            candidates.append(self.data.path)
        candidates.append(self.path)
        if self.rsrc is not None:
            candidates.append(self.rsrc.path)
        for p in candidates:
            try:
                return mac_dates(os.stat(p))
            except OSError:
                continue
        return 0, 0


def info_record_meta(ctx: MetaContext) -> Optional[FinderMeta]:
    p = _sibling(ctx.path, INFO_SUFFIX)
    try:
        with open(p, "rb") as f:
            raw = f.read(INFO_RECORD_SIZE)
    except OSError:
        return None
    if len(raw) != INFO_RECORD_SIZE:
        return None
    _res0, name, ftype, creator, flags, _res1, _dlen, _rlen, cdate, mdate = _INFO_STRUCT.unpack(raw)
    n = min(name[0], MAX_NAME_LEN)
    return FinderMeta(
        name=name[: 1 + n],
        ftype=ftype,
        creator=creator,
        flags=flags,
        cdate=cdate,
        mdate=mdate,
        origin="info",
    )


def appledouble_meta(ctx: MetaContext) -> Optional[FinderMeta]:
    info = appledouble.read_finder_info(ctx.path)
    if info is None:
        return None
    cdate, mdate = ctx.dates()
    return FinderMeta(ctx.base_name(), info.ftype, info.creator, info.flags, cdate, mdate, origin="appledouble")


def named_fork_meta(ctx: MetaContext) -> Optional[FinderMeta]:
    if not HAVE_NAMEDFORK or ctx.rsrc is None:
        return None
    p = _sibling(ctx.path, NAMED_FORK_SUFFIX)
    try:
        with open(p, "rb") as f:
            raw = f.read(RESOURCE_HEADER_SIZE)
    except OSError:
        return None
    if len(raw) != RESOURCE_HEADER_SIZE:
        return None
    ftype, creator, flags = _RES_FINDER_STRUCT.unpack_from(raw, _RES_FINDER_OFFSET)
    cdate, mdate = ctx.dates()
    return FinderMeta(ctx.base_name(), ftype, creator, flags, cdate, mdate, origin="namedfork")


def default_meta(ctx: MetaContext) -> Optional[FinderMeta]:
    cdate, mdate = ctx.dates()
    return FinderMeta(ctx.base_name(), ctx.default_type, ctx.default_creator, 0, cdate, mdate, origin="default")


MetaResolver = Callable[[MetaContext], Optional[FinderMeta]]
META_RESOLVERS: Sequence[MetaResolver] = (info_record_meta, appledouble_meta, named_fork_meta, default_meta)


def first_match(resolvers, arg):
    for resolver in resolvers:
        found = resolver(arg)
        if found is not None:
            return found
    return None


def resolve_forks(
    path: str,
    *,
    default_type: bytes = DEFAULT_TYPE,
    default_creator: bytes = DEFAULT_CREATOR,
    rsrc_resolvers: Sequence[RsrcResolver] = RSRC_RESOLVERS,
    meta_resolvers: Sequence[MetaResolver] = META_RESOLVERS,
) -> Optional[ForkSet]:
    """Locate both forks and the Finder metadata for ``path``.

    Returns None when neither a resource nor a data fork was found.
    """
    if len(os.fsencode(path)) >= MAX_PATH_BYTES:
        raise PathTooLongError(f"path too long: {path}")
    rsrc = first_match(rsrc_resolvers, path)
    data = resolve_data_fork(path)
    if rsrc is None and data is None:
        return None
    ctx = MetaContext(path, rsrc, data, default_type, default_creator)
    meta = first_match(meta_resolvers, ctx)
    if meta is None:
        meta = default_meta(ctx)
    return ForkSet(rsrc=rsrc, data=data, meta=meta)
