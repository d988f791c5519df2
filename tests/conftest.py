"""
Shared fixtures: parse in-memory C++ with libclang and look up functions.
"""

from typing import Callable, Optional, Tuple

import clang.cindex as cl
import pytest

from memoizer.cindex_helpers import parse_source

CXX_ARGS = ["-x", "c++", "-std=c++17"]

# enough of a memoize primitive for the rewritten code to parse
MEMOIZE_STUB = "template <typename F> F memoize(F f) { return f; }\n"


def find_function(tu: cl.TranslationUnit, name: str, definition=True) -> Optional[cl.Cursor]:
    for node in tu.cursor.walk_preorder():
        if node.kind == cl.CursorKind.FUNCTION_DECL and node.spelling == name \
                and node.is_definition() == definition:
            return node
    return None


@pytest.fixture
def parse() -> Callable[[str], Tuple[cl.TranslationUnit, bytes]]:
    def _parse(code: str, filename: str = "input.cpp"):
        tu = parse_source(filename, CXX_ARGS, contents=code)
        return tu, code.encode()
    return _parse


@pytest.fixture
def write_source(tmp_path):
    def _write(code: str, name: str = "input.cpp"):
        path = tmp_path / name
        path.write_text(code)
        return path
    return _write
