class SitError(Exception):
    """Base class for sit-specific errors."""


# Fatal: the output container itself is unusable
class ArchiveOutputError(SitError):
    pass


# Per-item: the item is reported and skipped
class ItemError(SitError):
    pass


class NoForksError(ItemError):
    pass


class PathTooLongError(ItemError):
    pass


class ForkTooLargeError(ItemError):
    pass


# Reader side
class BadSignatureError(SitError):
    pass


class HeaderChecksumError(SitError):
    pass


class TruncatedArchiveError(SitError):
    pass


class UnsupportedMethodError(SitError):
    pass
