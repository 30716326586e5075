"""Output adapters - HTTP status and metrics."""

from .status_server import StatusServer

__all__ = ['StatusServer']
