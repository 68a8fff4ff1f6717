"""Return eligibility rules."""

from datetime import datetime, timedelta

RETURN_WINDOW = timedelta(hours=24)


def eligible(delivered_at: datetime | None, now: datetime, window: timedelta = RETURN_WINDOW) -> bool:
    """Whether a return requested at ``now`` falls inside the return window.

    The distance is absolute, so a request stamped slightly before the
    recorded delivery time (clock skew between the courier and us) is still
    accepted. An order that was never delivered is never eligible.
    """
    if delivered_at is None:
        return False
    return abs(now - delivered_at) <= window
