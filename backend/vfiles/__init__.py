"""VFiles: a git-backed, version-controlled file store served over HTTP."""

__version__ = "0.1.0"
