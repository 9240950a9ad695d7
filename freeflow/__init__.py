"""Top-level package for freeflow."""

__version__ = "0.1.0"

from . import config, rewriter, storage, transcriber, vocabulary  # noqa: E402

__all__ = ["config", "rewriter", "storage", "transcriber", "vocabulary"]
