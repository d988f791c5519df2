import logging
from functools import partial
from typing import Callable, Iterator, List

import clang.cindex as cl

from memoizer.cindex_helpers import in_main_file
from memoizer.config import ANNOTATION

logger = logging.getLogger(__name__)

Predicate = Callable[[cl.Cursor], bool]


def is_annotated(cursor: cl.Cursor, annotation: str = ANNOTATION) -> bool:
    """True for `__attribute__((annotate("<annotation>")))` on the cursor."""
    return any(child.kind == cl.CursorKind.ANNOTATE_ATTR and child.spelling == annotation
               for child in cursor.get_children())


def annotated_with(annotation: str) -> Predicate:
    return partial(is_annotated, annotation=annotation)


class MatchFinder:
    """
    Finds function definitions in the main file of a translation unit that
    satisfy a predicate. Declarations and functions pulled in from headers are
    never matched.
    """

    def __init__(self, predicate: Predicate = is_annotated):
        self.predicate = predicate

    def find(self, tu: cl.TranslationUnit) -> Iterator[cl.Cursor]:
        for node in tu.cursor.walk_preorder():
            if node.kind != cl.CursorKind.FUNCTION_DECL or not node.is_definition():
                continue
            if not in_main_file(node):
                continue
            if self.predicate(node):
                logger.info(f"Matched '{node.spelling}' @ {node.location.file}:{node.location.line}")
                yield node

    def match_ast(self, tu: cl.TranslationUnit, callback: Callable[[cl.Cursor], object]) -> List:
        # one match is handled completely before the next one is looked at
        return [callback(node) for node in self.find(tu)]
