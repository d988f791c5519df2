#!/usr/bin/env python3
import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

import clang.cindex as cl

from memoizer import __version__, cindex_helpers, doctor
from memoizer.config import RewriteConfig
from memoizer.edits import InsertBefore, Rewriter, edit_to_dict
from memoizer.errors import MemoizeError
from memoizer.matching import MatchFinder, annotated_with
from memoizer.planner import MemoizeHandler, RewritePlan

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='memoizer',
        description='Rewrites functions annotated with __attribute__((annotate("memoize"))) '
                    'so that their results are cached',
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}',
    )
    parser.add_argument(
        '-v',
        '--verbose',
        action='count',
        dest='verbose',
        default=0,
        help='Increase logging verbosity (-v for info, -vv for debug)',
    )
    parser.add_argument(
        '--log-file',
        type=str,
        metavar='file',
        dest='log_file',
        help='(optional) Write the log to this file instead of stderr',
    )
    parser.add_argument(
        '--src',
        type=str,
        metavar='file',
        dest='src_file',
        help='The C/C++ source file to rewrite',
    )
    parser.add_argument(
        '--dest',
        type=str,
        metavar='file',
        dest='dest_file',
        help='Destination file (default: standard output)',
    )
    parser.add_argument(
        '--in-place',
        dest='in_place',
        action='store_true',
        help='Overwrite the source file with the rewritten code',
    )
    parser.add_argument(
        '--config',
        type=str,
        metavar='file',
        dest='config_file',
        help='(optional) JSON file with rewrite settings',
    )
    parser.add_argument(
        '--clang-args',
        type=str,
        metavar='clang_arg',
        dest='clang_args',
        action='append',
        default=[],
        help='(optional) Extra argument to pass to the Clang parser. Repeat for several.',
    )
    parser.add_argument(
        '--clang-ipath',
        type=str,
        metavar='dir',
        dest='clang_ipaths',
        action='append',
        default=[],
        help='(optional) Include path to pass to the Clang parser. Repeat for several.',
    )
    parser.add_argument(
        '--libclang',
        type=str,
        metavar='file',
        dest='library_file',
        help='(optional) Path of the libclang shared library to load',
    )
    parser.add_argument(
        '--annotation',
        type=str,
        dest='annotation',
        help='Annotation that marks functions to memoize (default: memoize)',
    )
    parser.add_argument(
        '--memoize-fn',
        type=str,
        dest='memoize_function',
        help='Name of the memoization primitive the generated code calls (default: memoize)',
    )
    parser.add_argument(
        '--suffix',
        type=str,
        dest='suffix',
        help='Suffix appended to the name of the renamed original (default: __original__)',
    )
    parser.add_argument(
        '--cache-name',
        type=str,
        dest='cache_name',
        help='Name of the static cache inside each wrapper (default: proxy)',
    )
    parser.add_argument(
        '--include',
        type=str,
        metavar='header',
        dest='include',
        help='(optional) Add `#include "header"` at the top of the rewritten file',
    )
    parser.add_argument(
        '--report',
        type=str,
        metavar='file',
        dest='report_file',
        help='(optional) Write the planned edits of every match to this JSON file',
    )
    parser.add_argument(
        '--dump-ast',
        type=str,
        metavar='file',
        dest='dump_ast',
        help='(optional) Dump the parsed AST to this file',
    )
    parser.add_argument(
        '--doctor',
        dest='doctor',
        action='store_true',
        help='Check the clang / libclang installation and exit',
    )
    parser.add_argument(
        '--want-major',
        type=int,
        dest='want_major',
        help='Major LLVM version the doctor should expect',
    )
    return parser


def setup_logging(verbose: int, log_file: Optional[str] = None):
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    kwargs = dict(filename=log_file, filemode='w') if log_file else dict(stream=sys.stderr)
    logging.basicConfig(level=level, format='%(levelname)s %(name)s: %(message)s', force=True, **kwargs)


def load_config(args) -> RewriteConfig:
    config = RewriteConfig.from_json(args.config_file) if args.config_file else RewriteConfig()
    return config.replace(
        annotation=args.annotation,
        memoize_function=args.memoize_function,
        suffix=args.suffix,
        cache_name=args.cache_name,
        library_file=args.library_file,
    )


def clang_arguments(args, config: RewriteConfig) -> List[str]:
    clang_args = list(config.clang_args)
    clang_args.extend(args.clang_args)
    clang_args.extend("-I" + ipath for ipath in args.clang_ipaths)
    return clang_args


def step_parse(src: Path, clang_args: List[str], dump_ast: Optional[str] = None):
    content = src.read_bytes()
    logger.info(f"Parsing {src} with {clang_args}")
    tu = cindex_helpers.parse_source(src, clang_args)
    if dump_ast:
        with open(dump_ast, "w") as f:
            cindex_helpers.dump_ast(f, tu.cursor)
    return tu, content


def step_match(tu: cl.TranslationUnit, config: RewriteConfig) -> List[cl.Cursor]:
    finder = MatchFinder(annotated_with(config.annotation))
    return list(finder.find(tu))


def check_collisions(tu: cl.TranslationUnit, plans: List[RewritePlan]):
    """Warn about mangled names that already exist; they are not renamed around."""
    mangled = {plan.mangled_name: plan.function for plan in plans}
    seen = set()
    for node in tu.cursor.walk_preorder():
        if node.spelling in mangled and node.spelling not in seen and cindex_helpers.in_main_file(node):
            seen.add(node.spelling)
            logger.warning(f"'{node.spelling}' already exists @ {node.location.file}:{node.location.line}; "
                           f"the renamed '{mangled[node.spelling]}' will collide with it")


def step_codegen(content: bytes, matches: List[cl.Cursor], config: RewriteConfig,
                 include: Optional[str] = None):
    rw = Rewriter(content)
    if include:
        rw.submit(InsertBefore(0, f'#include "{include}"\n'))
    handler = MemoizeHandler(rw, config)
    for func in matches:
        handler.run(func, content)
    return rw, handler.plans


def write_report(report_file: str, src: Path, plans: List[RewritePlan]):
    report = [{
        "file": str(src),
        "function": plan.function,
        "mangled_name": plan.mangled_name,
        "edits": [edit_to_dict(edit) for edit in plan],
    } for plan in plans]
    with open(report_file, "w") as f:
        json.dump(report, f, indent=2)


def run(args) -> int:
    config = load_config(args)
    cindex_helpers.configure_libclang(config.library_file)

    if args.doctor:
        ok, report = doctor.diagnose(args.want_major, config.library_file)
        print("\n".join(report))
        print()
        print("Overall:", "OK" if ok else "Fix the mismatches above")
        return 0 if ok else 1

    if not args.src_file:
        raise MemoizeError("--src is required")
    src = Path(args.src_file).resolve()
    if not src.is_file():
        raise MemoizeError(f"No such source file: {src}")

    tu, content = step_parse(src, clang_arguments(args, config), args.dump_ast)
    matches = step_match(tu, config)
    logger.info(f"Found {len(matches)} function(s) to memoize: {', '.join(m.spelling for m in matches) or '-'}")

    rw, plans = step_codegen(content, matches, config, args.include)
    check_collisions(tu, plans)
    dest = rw.commit()

    if args.report_file:
        write_report(args.report_file, src, plans)

    target = src if args.in_place else args.dest_file
    if target is None:
        # the source encoding is not ours to choose: pass the bytes through
        sys.stdout.flush()
        sys.stdout.buffer.write(dest)
        sys.stdout.buffer.flush()
    else:
        target = Path(target).resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(dest)
        print(f"Wrote {target} ({len(plans)} function(s) memoized)")
    return 0


# MAIN
def main(argv=None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    if args.in_place and args.dest_file:
        parser.error("--in-place and --dest are mutually exclusive")
    setup_logging(args.verbose, args.log_file)
    try:
        return run(args)
    except MemoizeError as e:
        logger.debug("aborting", exc_info=True)
        sys.exit(f"memoizer: {e}")


if __name__ == "__main__":
    sys.exit(main())
