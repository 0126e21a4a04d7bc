"""
Bear notes core - search, ranking, result caching and guarded mutation for
a Bear-style note corpus.

The package consumes a read-only row-oriented note store and exposes typed
search results and optimistic-concurrency mutation to a request-handling
layer.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bear-notes-core")
except PackageNotFoundError:
    __version__ = "0.1.0"
