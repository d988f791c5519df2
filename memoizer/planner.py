"""
Plans and submits the memoization rewrite of one matched function.

Given a function *definition* like

    int f(int x, float y, char z) { return x + y + z; }

the source is rewritten to

    int f(int x, float y, char z);
    int f__original__(int x, float y, char z) { return x + y + z; }

    int f(int x, float y, char z) {
      static const auto proxy = memoize(f__original__);
      return proxy(x, y, z);
    }

1. The original definition is renamed to a mangled name.
2. A new definition under the original name is appended. It keeps a cache
   built from the renamed function and forwards every call through it.
3. The original name is declared before the renamed definition, so recursive
   calls inside the body resolve to the cached wrapper.

The cache is a block-scope static, which C++ initializes exactly once even
when the first calls race. Keys, storage and eviction belong to the memoize
primitive named in the configuration.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

import clang.cindex as cl

from memoizer.config import RewriteConfig
from memoizer.edits import InsertAfter, InsertBefore, Replace, Rewriter, SourceEdit
from memoizer.errors import EditConflict
from memoizer.signature import (
    ExtractedFunction,
    extract,
    format_parameter_names,
    format_prototype,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = RewriteConfig()


@dataclass(frozen=True)
class RewritePlan:
    """The three edits for one function, in the only order they may be submitted."""
    function: str
    mangled_name: str
    rename: Replace
    wrapper: InsertAfter
    declaration: InsertBefore

    def __post_init__(self):
        # the declaration goes in front of everything else this plan touches
        anchor = self.declaration.offset
        if anchor > self.rename.span.start or anchor >= self.rename.span.end or anchor >= self.wrapper.offset:
            raise ValueError(f"Declaration of '{self.function}' at {anchor} is not ahead of the other edits")

    @property
    def edits(self) -> Tuple[SourceEdit, SourceEdit, SourceEdit]:
        return (self.rename, self.wrapper, self.declaration)

    def __iter__(self) -> Iterator[SourceEdit]:
        return iter(self.edits)

    def __len__(self):
        return len(self.edits)


def create_memoized_definition(function: ExtractedFunction, mangled_name: str,
                               config: RewriteConfig = DEFAULT_CONFIG) -> str:
    """The wrapper definition under the original name, including the leading blank line."""
    prototype = format_prototype(function.signature)
    indent = config.indent
    cache = config.cache_name
    return (
        "\n\n"
        f"{prototype} {{\n"
        f"{indent}static const auto {cache} = {config.memoize_function}({mangled_name});\n"
        f"{indent}return {cache}({format_parameter_names(function.signature.parameters)});\n"
        "}"
    )


def create_forward_declaration(function: ExtractedFunction) -> str:
    # first declaration of the name, so default arguments live here
    return format_prototype(function.signature, with_defaults=True) + ";\n"


def plan_rewrite(function: ExtractedFunction, config: RewriteConfig = DEFAULT_CONFIG) -> RewritePlan:
    signature = function.signature
    mangled_name = config.mangle(signature.name)
    return RewritePlan(
        function=signature.name,
        mangled_name=mangled_name,
        rename=Replace(function.rename_span, f"{signature.return_type} {mangled_name}"),
        wrapper=InsertAfter(function.definition_end, create_memoized_definition(function, mangled_name, config)),
        declaration=InsertBefore(function.definition_start, create_forward_declaration(function)),
    )


class MemoizeHandler:
    """
    Callback for the match finder: rewrites every function it is handed.

    Cursor offsets refer to the buffer the rewriter held when the handler was
    created. Once that rewriter has committed into a new buffer, the handler
    refuses to plan any further rewrite.
    """

    def __init__(self, rewriter: Rewriter, config: Optional[RewriteConfig] = None):
        self.rewriter = rewriter
        self.config = config or DEFAULT_CONFIG
        self.source = rewriter.src
        self.plans = []

    def run(self, cursor: Optional[cl.Cursor], source: Optional[bytes] = None) -> RewritePlan:
        if self.rewriter.src != self.source:
            raise EditConflict("The rewriter was committed after this handler was created; "
                               "cursor offsets no longer match its buffer")
        # all spans are taken before the first edit is submitted
        function = extract(cursor, self.source if source is None else source)
        plan = plan_rewrite(function, self.config)
        logger.info(f"Memoizing '{plan.function}' as '{plan.mangled_name}'")
        self.submit(plan)
        self.plans.append(plan)
        return plan

    def __call__(self, cursor: cl.Cursor) -> RewritePlan:
        return self.run(cursor)

    def submit(self, plan: RewritePlan):
        self.rewriter.replace_text(plan.rename.span, plan.rename.text)
        self.rewriter.insert_after(plan.wrapper.offset, plan.wrapper.text)
        # last: inserting in front of the definition must not come before
        # the edits that were located inside it
        self.rewriter.insert_before(plan.declaration.offset, plan.declaration.text)
