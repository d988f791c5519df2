"""
memoizer - rewrites C/C++ functions annotated with
`__attribute__((annotate("memoize")))` so every call goes through a cache.
"""

__version__ = "0.1.0"
