"""
gitnote-sync - mirrors a local note store into a private GitHub repository.

Notebooks, folders and tags travel as a single JSON snapshot, notes travel as
Markdown files with front matter. Pull merges remote changes back using
last-write-wins timestamps and surfaces structural conflicts for explicit
resolution.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gitnote-sync")
except PackageNotFoundError:
    __version__ = "0.3.0"
