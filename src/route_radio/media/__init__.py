"""Visual media selection."""

from .selector import MediaPoolSelector

__all__ = ['MediaPoolSelector']
