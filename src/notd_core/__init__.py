"""
notd core - property indexing and batch note mutation for the notd outliner.

Notes and pages carry free-form content with embedded ``name::value``
annotations. This package extracts those annotations into indexed property
rows, keeps derived flags and trigger side effects in step with them, and
applies many note mutations in one transaction through a batch call.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notd-core")
except PackageNotFoundError:
    __version__ = "0.3.0"
