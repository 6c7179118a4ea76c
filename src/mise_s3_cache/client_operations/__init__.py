"""Client operations that report on the remote cache."""

from .stats import get_cache_usage

__all__ = ["get_cache_usage"]
