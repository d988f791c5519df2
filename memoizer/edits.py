"""
Text edits and the source rewriter that applies them.

Every edit refers to offsets in the original, unedited buffer. The rewriter
keeps the original as an immutable snapshot and only composes the edits when
they are committed, in a single pass sorted by anchor. At the same anchor,
insertions-before come first, then insertions-after, then the replaced text.
An insertion-after at X belongs to the text that ends at X, so it never lands
inside a replacement that starts at X. Edits of the same kind at the same
anchor keep their submission order.
"""

import logging
from dataclasses import dataclass
from typing import List, Union

from memoizer.cindex_helpers import encode_source
from memoizer.errors import EditConflict
from memoizer.signature import SourceSpan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Replace:
    span: SourceSpan
    text: str

    @property
    def anchor(self) -> int:
        return self.span.start


@dataclass(frozen=True)
class InsertBefore:
    offset: int
    text: str

    @property
    def anchor(self) -> int:
        return self.offset


@dataclass(frozen=True)
class InsertAfter:
    offset: int
    text: str

    @property
    def anchor(self) -> int:
        return self.offset


SourceEdit = Union[Replace, InsertBefore, InsertAfter]

_RANK = {InsertBefore: 0, InsertAfter: 1, Replace: 2}


def edit_to_dict(edit: SourceEdit) -> dict:
    """JSON-friendly view of an edit, in the shape of a rewrite report entry."""
    if isinstance(edit, Replace):
        return {"kind": "replace", "start": edit.span.start, "end": edit.span.end, "repl": edit.text}
    kind = "insert_before" if isinstance(edit, InsertBefore) else "insert_after"
    return {"kind": kind, "start": edit.offset, "end": edit.offset, "repl": edit.text}


class Rewriter:
    def __init__(self, original: bytes):
        self.src = original
        self.commited_edits: List[SourceEdit] = []  # pending, in submission order

    def submit(self, edit: SourceEdit):
        if not isinstance(edit, (Replace, InsertBefore, InsertAfter)):
            raise TypeError(f"Not a source edit: {edit!r}")
        self.commited_edits.append(edit)
        logger.debug(f"Submitted {edit_to_dict(edit)}")

    def replace_text(self, span: SourceSpan, text: str):
        self.submit(Replace(span, text))

    def insert_before(self, offset: int, text: str):
        self.submit(InsertBefore(offset, text))

    def insert_after(self, offset: int, text: str):
        self.submit(InsertAfter(offset, text))

    def _ordered(self) -> List[SourceEdit]:
        ranked = sorted(enumerate(self.commited_edits),
                        key=lambda pair: (pair[1].anchor, _RANK[type(pair[1])], pair[0]))
        return [edit for _, edit in ranked]

    def commit(self, update_src=True) -> bytes:
        """
        Compose all pending edits with the original buffer in one linear pass.
        """
        text = bytearray()
        cursor = 0
        size = len(self.src)
        for edit in self._ordered():
            end = edit.span.end if isinstance(edit, Replace) else edit.anchor
            if edit.anchor < 0 or end > size:
                raise EditConflict(f"Edit {edit_to_dict(edit)} falls outside the buffer ({size} bytes)")
            if edit.anchor < cursor:
                raise EditConflict(f"Edit {edit_to_dict(edit)} overlaps text already replaced up to offset {cursor}")
            text += self.src[cursor:edit.anchor]
            text += encode_source(edit.text)
            cursor = end
        text += self.src[cursor:]

        logger.info(f"Committed {len(self.commited_edits)} edit(s)")
        result = bytes(text)
        if update_src:
            self.src = result
            self.commited_edits = []
        return result
