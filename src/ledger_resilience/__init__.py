"""ledger-resilience: Resilient transaction and query execution for ledger networks."""

from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("ledger-resilience")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = ["__version__"]
