from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from sit.constants import DEFAULT_CREATOR, DEFAULT_OUTPUT, DEFAULT_TYPE, METHOD_LZW
from sit.errors import SitError
from sit.reader import ArchiveReader
from sit.writer import ArchiveOptions, build_archive

_EPILOG = """\
Files without type information are assigned type TEXT and creator KAHL
(a THINK C text file) unless -T/-C say otherwise.

examples:
  # create "archive.sit" containing three specified files
  sit file1 file2 file3
  # create "FolderArchive.sit" containing FolderToBeArchived
  sit -o FolderArchive.sit FolderToBeArchived
  # specify that untyped files are JPEG and open in GraphicConverter
  sit -o jpgArchive.sit -T JPEG -C GKON *.jpg
  # list or check an existing archive
  sit list archive.sit
  sit verify archive.sit
"""


def _fourcc(value: str) -> bytes:
    try:
        code = value.encode("mac_roman")
    except UnicodeEncodeError:
        raise argparse.ArgumentTypeError(f"{value!r} is not representable in MacRoman")
    if len(code) != 4:
        raise argparse.ArgumentTypeError(f"{value!r} must be exactly four characters")
    return code


def cmd_create(output: str, inputs: List[str], *, options: Optional[ArchiveOptions] = None) -> bool:
    """Create an archive from files and folders.

    Args:
        output: Path of the .sit file to write (truncated if it exists).
        inputs: Files and/or directories to store, in order.
        options: Compression, newline conversion, default type/creator and
            verbosity; defaults to ``ArchiveOptions()``.

    Returns:
        True once the archive header has been finalized. Items that had to be
        skipped are reported on stderr and do not affect the result.
    """
    options = options or ArchiveOptions()
    total, items = build_archive(output, inputs, options)
    if not options.verbose:
        print(f'{output}: {items} item(s), {total} bytes')
    return True


def cmd_list(archive: str) -> bool:
    """List archive entries, one per line, indented by folder depth."""
    with ArchiveReader(archive) as r:
        for e in r.list():
            h = e.header
            indent = "  " * e.depth
            if e.kind == "end":
                continue
            if e.kind == "folder":
                print(f"{indent}{e.name}/")
                continue
            tc = f"{h.ftype.decode('mac_roman')}/{h.creator.decode('mac_roman')}"
            packed = "lzw" if METHOD_LZW in (h.sec_method, h.prim_method) else "stored"
            print(
                f"{indent}{e.name}\t{tc}\tData:{h.prim_orig_len}/{h.prim_stored_len} "
                f"Rsrc:{h.sec_orig_len}/{h.sec_stored_len}\t{packed}"
            )
    return True


def cmd_verify(archive: str) -> bool:
    """Check header CRCs, folder lengths, and fork CRCs. Prints OK or FAIL."""
    with ArchiveReader(archive) as r:
        ok = r.verify()
    print("OK" if ok else "FAIL")
    return ok


class _Parser(argparse.ArgumentParser):
    """Usage errors exit 1, leaving 2 for fatal archive errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _create_parser() -> argparse.ArgumentParser:
    ap = _Parser(
        prog="sit",
        description="Create a StuffIt 1.5.1-compatible archive from files or folders.",
        epilog=_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("inputs", nargs="+", metavar="file", help="Files/directories to archive")
    ap.add_argument("-o", dest="output", default=DEFAULT_OUTPUT, metavar="dstfile",
                    help=f'Create archive with this name (default is "{DEFAULT_OUTPUT}")')
    ap.add_argument("-v", dest="verbose", action="count", default=0,
                    help="Verbose output (can specify more than once for extra info)")
    ap.add_argument("-u", dest="unix", action="store_true",
                    help="Convert '\\n' chars to '\\r' in file's data while archiving")
    ap.add_argument("-T", dest="ftype", type=_fourcc, default=DEFAULT_TYPE, metavar="type",
                    help="Use this four-character type code if file doesn't have one")
    ap.add_argument("-C", dest="creator", type=_fourcc, default=DEFAULT_CREATOR, metavar="creator",
                    help="Use this four-character creator if file doesn't have one")
    ap.add_argument("-n", dest="store", action="store_true",
                    help="Store forks without compression")
    return ap


def _archive_parser(cmd: str, help_text: str) -> argparse.ArgumentParser:
    ap = _Parser(prog=f"sit {cmd}", description=help_text)
    ap.add_argument("archive", help="Archive path")
    return ap


def main(argv: List[str] | None = None):
    if argv is None:
        argv = sys.argv[1:]
    try:
        if argv and argv[0] == "list":
            args = _archive_parser("list", "List archive contents").parse_args(argv[1:])
            cmd_list(args.archive)
        elif argv and argv[0] == "verify":
            args = _archive_parser("verify", "Verify archive integrity").parse_args(argv[1:])
            sys.exit(0 if cmd_verify(args.archive) else 1)
        else:
            args = _create_parser().parse_args(argv)
            options = ArchiveOptions(
                compress=not args.store,
                convert_newlines=args.unix,
                default_type=args.ftype,
                default_creator=args.creator,
                verbose=args.verbose,
            )
            cmd_create(args.output, args.inputs, options=options)
    except (SitError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
