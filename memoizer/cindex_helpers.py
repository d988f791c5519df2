"""
Thin layer over the libclang Python bindings: locating the shared library,
parsing a translation unit and a few cursor utilities.
"""

import logging
import os
from pathlib import Path
from typing import List, Optional, TextIO

import clang.cindex as cl

from memoizer.errors import ParseError

logger = logging.getLogger(__name__)

LIBCLANG_ENV = "LIBCLANG_LIBRARY_FILE"


def find_library_file(explicit: Optional[str] = None) -> Optional[Path]:
    """
    Pick the libclang shared library to load.

    Order: explicit path, $LIBCLANG_LIBRARY_FILE, $CONDA_PREFIX/lib/libclang.so.
    Returns None to let the bindings discover the library on their own
    (the `libclang` wheel ships one).
    """
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(LIBCLANG_ENV)
    if from_env:
        return Path(from_env)
    prefix = os.environ.get("CONDA_PREFIX")
    if prefix:
        candidate = Path(prefix) / "lib" / "libclang.so"
        if candidate.exists():
            return candidate
    return None


def configure_libclang(explicit: Optional[str] = None):
    # the bindings refuse to change the library once it has been loaded
    if cl.Config.loaded:
        return
    libclang = find_library_file(explicit)
    if libclang is not None:
        logger.info(f"Using libclang from {libclang}")
        cl.Config.set_library_file(str(libclang))


def parse_source(src, clang_args: Optional[List[str]] = None, contents: Optional[str] = None) -> cl.TranslationUnit:
    """
    Parse `src` into a translation unit.

    When `contents` is given the file is parsed from memory and does not have
    to exist on disk.
    """
    args = list(clang_args or [])
    unsaved = [(str(src), contents)] if contents is not None else None
    idx = cl.Index.create()
    try:
        tu = idx.parse(str(src), args=args, unsaved_files=unsaved,
                       options=cl.TranslationUnit.PARSE_DETAILED_PROCESSING_RECORD)
    except cl.TranslationUnitLoadError as e:
        raise ParseError(f"libclang failed to parse {src}: {e}") from e

    errors = [d for d in tu.diagnostics if d.severity >= cl.Diagnostic.Error]
    for d in tu.diagnostics:
        logger.debug(f"{d.severity} {d.location} {d.spelling}")
    if errors:
        first = errors[0]
        raise ParseError(f"{first.location.file}:{first.location.line}: {first.spelling}"
                         + (f" (and {len(errors) - 1} more error(s))" if len(errors) > 1 else ""))
    return tu


def dump_ast(outfile: TextIO, cursor: cl.Cursor, indent=0):
    outfile.write('  ' * indent + f'Kind: {cursor.kind}, Name: {cursor.spelling}, Location: {cursor.location}\n')
    for child in cursor.get_children():
        dump_ast(outfile, child, indent + 1)


def in_main_file(cursor: cl.Cursor) -> bool:
    location = cursor.location
    return location.file is not None and location.file.name == cursor.translation_unit.spelling


def source_between(src: bytes, start: int, end: int) -> str:
    # bytes that are not UTF-8 survive as lone surrogates; encode_source restores them
    return src[start:end].decode("utf-8", "surrogateescape")


def encode_source(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")
