from __future__ import annotations

from .constants import MAX_NAME_LEN

# MacRoman 0x80-0xD8: accented Latin letters and the common typographic
# symbols. Everything above stays unmapped.
_HIGH_CHARS = {bytes([b]).decode("mac_roman"): b for b in range(0x80, 0xD9)}

_MAC_PATH_SEP = 0x3A  # ':'
_SUBSTITUTE = 0x2F  # '/'


def to_mac_roman(name: str | bytes, max_length: int = MAX_NAME_LEN) -> bytes:
    """Transcode a filesystem name into a MacRoman Pascal string.

    Characters in the mapping table become their single MacRoman byte;
    other non-ASCII characters fall back to the first byte of their UTF-8
    encoding. Colons are the classic Mac path delimiter and are replaced
    with slashes so the item stays extractable. At most ``max_length``
    bytes follow the length byte.
    """
    if isinstance(name, bytes):
        name = name.decode("utf-8", "surrogateescape")
    out = bytearray()
    for ch in name:
        if len(out) >= max_length:
            break
        code = ord(ch)
        if code < 0x80:
            out.append(_SUBSTITUTE if code == _MAC_PATH_SEP else code)
        elif ch in _HIGH_CHARS:
            out.append(_HIGH_CHARS[ch])
        else:
            out.append(ch.encode("utf-8", "surrogateescape")[0])
    return bytes([len(out)]) + bytes(out)


def pascal_to_str(raw: bytes) -> str:
    """Decode a length-prefixed MacRoman name for display."""
    if not raw:
        return ""
    n = min(raw[0], len(raw) - 1)
    return raw[1 : 1 + n].decode("mac_roman")
