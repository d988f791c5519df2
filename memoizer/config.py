import json
import logging
import re
from dataclasses import dataclass, field, fields, replace as _replace
from pathlib import Path
from typing import List, Optional

from memoizer.errors import ConfigError

logger = logging.getLogger(__name__)

# matching
ANNOTATION = "memoize"

# generated code
MANGLE_SUFFIX = "__original__"
MEMOIZE_FUNCTION = "memoize"
CACHE_NAME = "proxy"
INDENT = "  "

IDENTIFIER_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$', re.ASCII)
IDENTIFIER_TAIL_RE = re.compile(r'^[A-Za-z0-9_]+$', re.ASCII)
# the memoize primitive may live in a namespace, e.g. `mz::memoize`
QUALIFIED_NAME_RE = re.compile(r'^(?:::)?[A-Za-z_]\w*(?:::[A-Za-z_]\w*)*$', re.ASCII)


@dataclass(frozen=True)
class RewriteConfig:
    annotation: str = ANNOTATION
    suffix: str = MANGLE_SUFFIX
    memoize_function: str = MEMOIZE_FUNCTION
    cache_name: str = CACHE_NAME
    indent: str = INDENT
    library_file: Optional[str] = None
    clang_args: List[str] = field(default_factory=list)

    def __post_init__(self):
        checkSanity(self)

    def mangle(self, name: str) -> str:
        return name + self.suffix

    def replace(self, **overrides) -> "RewriteConfig":
        """Returns a copy with every non-None override applied."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(sorted(unknown))}")
        return _replace(self, **changes)

    @classmethod
    def from_json(cls, path) -> "RewriteConfig":
        data = process_json(path)
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object at the top level")
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"{path}: unknown configuration key(s): {', '.join(sorted(unknown))}")
        logger.info(f"Loaded configuration from {path}")
        return cls(**data)


def process_json(json_file_path):
    try:
        with open(json_file_path, 'r') as file:
            return json.load(file)
    except OSError as e:
        raise ConfigError(f"Cannot read configuration file {json_file_path}: {e.strerror}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"{json_file_path}: invalid JSON ({e})") from e


def checkSanity(config: RewriteConfig):
    for name in ("annotation", "suffix", "memoize_function", "cache_name", "indent"):
        if not isinstance(getattr(config, name), str):
            raise ConfigError(f"{name} must be a string")
    if not IDENTIFIER_RE.match(config.annotation):
        # annotate("...") takes any string, but we only ever match plain words
        raise ConfigError(f"Annotation {config.annotation!r} is not a plain identifier")
    if not IDENTIFIER_TAIL_RE.match(config.suffix):
        raise ConfigError(f"Suffix {config.suffix!r} cannot extend a C identifier")
    if not QUALIFIED_NAME_RE.match(config.memoize_function):
        raise ConfigError(f"Memoize function {config.memoize_function!r} is not a valid name")
    if not IDENTIFIER_RE.match(config.cache_name):
        raise ConfigError(f"Cache name {config.cache_name!r} is not a valid identifier")
    if config.indent.strip(" \t"):
        raise ConfigError("Indent may only contain spaces and tabs")
    if not isinstance(config.clang_args, list) or not all(isinstance(a, str) for a in config.clang_args):
        raise ConfigError("clang_args must be a list of strings")
    if config.library_file is not None and not Path(config.library_file).name:
        raise ConfigError(f"library_file {config.library_file!r} does not name a file")
