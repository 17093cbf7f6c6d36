"""HTTP clients for upstream price APIs."""

from .rate_limiter import MinIntervalRateLimiter  # noqa: F401
from .universalis import UniversalisClient  # noqa: F401
