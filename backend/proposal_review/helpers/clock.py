"""Injectable time source.

Every ``now()`` read used for token expiry, due dates and lifecycle
timestamps goes through a ``Clock`` so tests can pin the time.  The
application holds one clock on ``app.state.clock``.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Default clock: timezone-aware wall-clock UTC."""
    return datetime.now(timezone.utc)
