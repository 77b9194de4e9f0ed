"""Asyncio client for the cast receiver control protocol."""

__version__ = "0.3.0"

from castlink.client import CastClient  # noqa: E402

__all__ = ["CastClient", "__version__"]
