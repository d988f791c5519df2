"""
doctor.py - sanity-check the clang executable, libclang and its Python bindings.

Run:  memoizer --doctor [--want-major N]
"""

import logging
import re
import subprocess
from importlib import metadata
from pathlib import Path
from typing import List, Optional, Tuple

import clang.cindex as cl

from memoizer.cindex_helpers import configure_libclang

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helper utilities
# ---------------------------------------------------------------------------
def major_from_filename(path: Path):
    m = re.search(r"\.so\.(\d+)", path.name)
    return int(m.group(1)) if m else None


def major_from_version_string(text):
    m = re.search(r"clang version\s+(\d+)\.", text)
    return int(m.group(1)) if m else None


def run(cmd):
    try:
        out = subprocess.check_output(cmd, stderr=subprocess.STDOUT,
                                      text=True, timeout=5)
        return out.strip()
    except (OSError, subprocess.SubprocessError) as e:
        return f"<{e.__class__.__name__}: {e}>"


def pkg_version(name):
    try:
        return metadata.version(name)
    except metadata.PackageNotFoundError:
        return None


def _status(major, want):
    if want is None or major == want:
        return "OK  "
    return "WARN"


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------
def check_clang_executable(want: Optional[int], report: List[str]) -> bool:
    out = run(["clang", "--version"])
    ver = major_from_version_string(out)
    if ver is None:
        # the rewriter only needs libclang, a missing compiler is not fatal
        report.append(f"WARN  clang   : {out or 'no version output'}")
        return True
    report.append(f"{_status(ver, want)}  clang   : version {ver}")
    return want is None or ver == want


def check_python_bindings(want: Optional[int], report: List[str]) -> bool:
    ver = pkg_version("libclang")
    if ver is None:
        report.append("WARN  python pkg libclang: not installed (relying on a system libclang)")
        return True
    maj = int(ver.split(".")[0])
    report.append(f"{_status(maj, want)}  python pkg libclang: {ver} (major {maj})")
    return want is None or maj == want


def check_library_loads(library_file: Optional[str], report: List[str]) -> bool:
    try:
        configure_libclang(library_file)
        cl.Index.create()
    except cl.LibclangError as e:
        report.append(f"FAIL  clang.cindex load: {e}")
        return False
    loaded = cl.Config.library_file or "<bundled with the bindings>"
    report.append(f"OK    clang.cindex loaded : {loaded}")
    if cl.Config.library_file:
        maj = major_from_filename(Path(cl.Config.library_file))
        if maj is not None:
            report.append(f"OK    libclang.so major   : {maj}")
    return True


def diagnose(want: Optional[int] = None, library_file: Optional[str] = None) -> Tuple[bool, List[str]]:
    report: List[str] = []
    ok = check_clang_executable(want, report)
    ok = check_python_bindings(want, report) and ok
    ok = check_library_loads(library_file, report) and ok
    for line in report:
        logger.debug(line)
    return ok, report
