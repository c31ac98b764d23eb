"""
StuffIt 1.5.1-compatible archiver

This package writes classic Macintosh ``.sit`` archives ("SIT!"/"rLau")
from ordinary files and folders. Current implementation includes:

- Archive and item headers with CRC-16 protected records
- Folder start/end markers patched in place once their contents are written
- Resource fork lookup via AppleDouble, ``.rsrc``/``.data``/``.info``
  sidecars and, on macOS, the ``..namedfork/rsrc`` view
- LZW (method 2) compression with stored fallback when it does not pay off
- Optional Unix-to-Mac newline conversion of data forks
- Listing and verification of existing archives via CLI
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "writer",
    "reader",
    "forks",
    "lzw",
]

# Importable programmatic API is available via sit.writer.build_archive and
# the CLI functions in sit.cli (cmd_create/cmd_list/cmd_verify).
