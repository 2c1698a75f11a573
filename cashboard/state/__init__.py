"""Local state package."""

from cashboard.state.cache import LocalStateCache

__all__ = ["LocalStateCache"]
