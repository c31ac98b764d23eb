# Archive header signatures and version
SIT_MAGIC = b"SIT!"
SIT_MAGIC2 = b"rLau"
SIT_VERSION = 1

ARCHIVE_HEADER_SIZE = 22
ITEM_HEADER_SIZE = 112
# Header checksum covers everything but its own trailing u16
ITEM_HEADER_CRC_SPAN = ITEM_HEADER_SIZE - 2

# Compression methods (per fork)
METHOD_NONE = 0
METHOD_RLE = 1
METHOD_LZW = 2
METHOD_HUFFMAN = 3
METHOD_ENCRYPTED = 16  # flag bit, never produced
METHOD_FOLDER_START = 32
METHOD_FOLDER_END = 33

MAX_NAME_LEN = 63
# Length fields are u32
MAX_FORK_LEN = 0xFFFFFFFF

# Mac epoch (1904-01-01) expressed relative to the Unix epoch
MAC_EPOCH_DELTA = 0x7C25B080

DEFAULT_TYPE = b"TEXT"
DEFAULT_CREATOR = b"KAHL"
DEFAULT_OUTPUT = "archive.sit"

# LZW parameters; StuffIt method 2 is compress(1) with a 14-bit table
LZW_MAX_BITS = 14
LZW_MAGIC = b"\x1f\x9d"
LZW_BLOCK_MODE = 0x80
LZW_HEADER_SIZE = 3

BUFSIZE = 64 * 1024
MAX_PATH_BYTES = 4096

# Desktop-metadata files that are never archived
IGNORED_NAMES = frozenset({".DS_Store"})

# Legacy sidecar conventions
RSRC_SUFFIX = ".rsrc"
DATA_SUFFIX = ".data"
INFO_SUFFIX = ".info"
APPLEDOUBLE_PREFIX = "._"
NAMED_FORK_SUFFIX = "/..namedfork/rsrc"

# AppleDouble
APPLEDOUBLE_MAGIC = 0x00051607
AD_ENTRY_RESOURCE_FORK = 2
AD_ENTRY_FINDER_INFO = 9
FINDER_INFO_MIN_SIZE = 32

# xbin .info record (MacBinary header layout, first 99 bytes)
INFO_RECORD_SIZE = 99

# Native resource fork header, Finder info fields at 82/86/90
RESOURCE_HEADER_SIZE = 128
