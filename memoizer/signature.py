"""
Signature extraction for matched function definitions.

Given the cursor of a function *definition* like

    int f(int x, float y = 1.f) { return x + y; }

this module recovers everything the rewrite needs: the return type, the name,
the parameters (type, name, verbatim declaration and default argument) and
the byte offsets of the name, the prototype and the body. All offsets refer to
the buffer as it was parsed, before any edit is applied.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import clang.cindex as cl

from memoizer.cindex_helpers import source_between
from memoizer.errors import PreconditionViolation

logger = logging.getLogger(__name__)

# keywords that may precede the return type of a free function definition
LEADING_SPECIFIERS = {"static", "inline", "extern", "constexpr", "__inline", "__inline__"}
REPEATED_SPECIFIERS = ("static", "inline")
# attribute spellings followed by a parenthesized argument list
ATTRIBUTE_KEYWORDS = {"__attribute__", "__declspec", "alignas"}


@dataclass(frozen=True)
class SourceSpan:
    """Half-open byte range [start, end) over the original buffer."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"Invalid span [{self.start}, {self.end})")


@dataclass(frozen=True)
class Parameter:
    type: str
    name: str
    declaration: str = ""
    default: Optional[str] = None

    def __post_init__(self):
        if not self.declaration:
            object.__setattr__(self, "declaration", f"{self.type} {self.name}")


@dataclass(frozen=True)
class FunctionSignature:
    return_type: str
    name: str
    parameters: Tuple[Parameter, ...] = ()
    # repeated on the wrapper and its declaration so the name keeps its linkage
    specifiers: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ExtractedFunction:
    signature: FunctionSignature
    name_span: SourceSpan
    prototype_span: SourceSpan
    body_start: int
    definition_start: int
    definition_end: int
    return_type_start: int

    @property
    def rename_span(self) -> SourceSpan:
        # from the start of the return type up to (not including) the '('
        return SourceSpan(self.return_type_start, self.name_span.end)


# -----------------------------------------------------------------------------
#  Formatting
# -----------------------------------------------------------------------------

def format_parameter_list(parameters: Sequence[Parameter], with_defaults=False) -> str:
    """`(T1 n1, T2 n2)`; an empty sequence gives `()`."""
    rendered = []
    for p in parameters:
        if with_defaults and p.default is not None:
            rendered.append(f"{p.declaration} = {p.default}")
        else:
            rendered.append(p.declaration)
    return "(" + ", ".join(rendered) + ")"


def format_parameter_names(parameters: Sequence[Parameter]) -> str:
    """`n1, n2` for forwarding a call; an empty sequence gives ``."""
    return ", ".join(p.name for p in parameters)


def format_prototype(signature: FunctionSignature, name: Optional[str] = None, with_defaults=False) -> str:
    """Specifiers, return type, name and parameter list. No terminator is appended."""
    leading = "".join(f"{s} " for s in signature.specifiers)
    return (f"{leading}{signature.return_type} {name or signature.name}"
            f"{format_parameter_list(signature.parameters, with_defaults)}")


# -----------------------------------------------------------------------------
#  Extraction
# -----------------------------------------------------------------------------

def extract(cursor: Optional[cl.Cursor], source: bytes) -> ExtractedFunction:
    """
    Extract the signature and spans of a function definition.

    Raises PreconditionViolation if the cursor is missing, has no body, is
    variadic, or has a parameter without a name. Nothing is rewritten in any
    of these cases.
    """
    if cursor is None:
        raise PreconditionViolation("No function definition to extract")

    name = cursor.spelling
    body = _find_body(cursor)
    if body is None:
        raise PreconditionViolation(f"Function '{name}' has no body; only definitions can be memoized")
    if cursor.type.kind == cl.TypeKind.FUNCTIONPROTO and cursor.type.is_function_variadic():
        raise PreconditionViolation(f"Function '{name}' is variadic; '...' cannot be forwarded")

    parameters = []
    for idx, p in enumerate(cursor.get_arguments()):
        if not p.spelling:
            raise PreconditionViolation(
                f"Parameter {idx + 1} of function '{name}' is unnamed and cannot be forwarded")
        parameters.append(_extract_parameter(p, source))

    definition_start = cursor.extent.start.offset
    name_start = cursor.location.offset
    name_span = SourceSpan(name_start, name_start + len(name.encode()))
    body_start = body.extent.start.offset
    close_paren = _find_parameter_list_end(cursor, name_span.end, body_start)
    return_type_start, specifiers = _find_return_type_start(cursor, name_start)

    signature = FunctionSignature(
        return_type=cursor.result_type.spelling,
        name=name,
        parameters=tuple(parameters),
        specifiers=tuple(s for s in specifiers if s in REPEATED_SPECIFIERS),
    )
    function = ExtractedFunction(
        signature=signature,
        name_span=name_span,
        prototype_span=SourceSpan(definition_start, close_paren + 1),
        body_start=body_start,
        definition_start=definition_start,
        definition_end=cursor.extent.end.offset,
        return_type_start=return_type_start,
    )
    logger.debug(f"Extracted '{name}' @ {cursor.location.file}:{cursor.location.line}: {function}")
    return function


def _find_body(cursor: cl.Cursor) -> Optional[cl.Cursor]:
    if not cursor.is_definition():
        return None
    for child in cursor.get_children():
        if child.kind == cl.CursorKind.COMPOUND_STMT:
            return child
    return None


def _extract_parameter(param: cl.Cursor, source: bytes) -> Parameter:
    start = param.extent.start.offset
    end = param.extent.end.offset
    default = None
    # `int x = 3` -> declaration `int x`, default `3`
    for token in param.get_tokens():
        offset = token.extent.start.offset
        if offset >= end:
            break
        if token.spelling == "=":
            default = source_between(source, token.extent.end.offset, end).strip()
            end = offset
            break
    return Parameter(
        type=param.type.spelling,
        name=param.spelling,
        declaration=source_between(source, start, end).strip(),
        default=default,
    )


def _find_parameter_list_end(cursor: cl.Cursor, name_end: int, body_start: int) -> int:
    """Offset of the ')' that closes the parameter list opened right after the name."""
    depth = 0
    for token in cursor.get_tokens():
        offset = token.extent.start.offset
        if offset < name_end:
            continue
        if offset >= body_start:
            break
        if token.spelling == "(":
            depth += 1
        elif token.spelling == ")":
            depth -= 1
            if depth == 0:
                return offset
    raise PreconditionViolation(f"Could not find the parameter list of '{cursor.spelling}'")


def _find_return_type_start(cursor: cl.Cursor, name_start: int) -> Tuple[int, List[str]]:
    """
    Offset of the first token of the return type, past any leading specifiers
    and attributes. Also returns the skipped specifier keywords in source order.
    """
    specifiers = []
    depth = 0
    attribute_args = False
    for token in cursor.get_tokens():
        offset = token.extent.start.offset
        if offset >= name_start:
            break
        spelling = token.spelling
        if depth:
            if spelling in ("(", "["):
                depth += 1
            elif spelling in (")", "]"):
                depth -= 1
            continue
        if attribute_args and spelling == "(":
            attribute_args = False
            depth = 1
            continue
        attribute_args = False
        if spelling in LEADING_SPECIFIERS:
            specifiers.append(spelling)
        elif spelling in ATTRIBUTE_KEYWORDS:
            attribute_args = True
        elif spelling == "[":
            # [[attribute]]
            depth = 1
        else:
            return offset, specifiers
    raise PreconditionViolation(f"Could not find the return type of '{cursor.spelling}'")
