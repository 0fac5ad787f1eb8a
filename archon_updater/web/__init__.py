"""Remote fetching."""

from .fetcher import ArchonFetcher, locate_build_code, WOWHEAD_TALENT_CALC_PREFIX
from .rate_limiter import RateLimiter

__all__ = [
    "ArchonFetcher",
    "RateLimiter",
    "WOWHEAD_TALENT_CALC_PREFIX",
    "locate_build_code",
]
