"""Finance chat server: accounts, long-term memory and a memory-aware chat pipeline.

This package provides a FastAPI application factory named ``create_app``
inside ``finance_chat/server.py`` (see :func:`create_app`).

Typical usage
-------------
from finance_chat import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

__all__ = ["create_app", "__version__", "get_version"]

# ---------------------------------------------------------------------
# Version handling
# ---------------------------------------------------------------------
__version__ = "0.1.0"


def get_version() -> str:
    """Return the package version."""
    return __version__


def create_app(*args, **kwargs):
    """Return a configured FastAPI application.

    Forwards to :func:`finance_chat.server.create_app`; the import is deferred
    so ``import finance_chat`` stays cheap for callers that only need the
    stores or the extraction helpers.
    """
    from .server import create_app as _create_app

    return _create_app(*args, **kwargs)
