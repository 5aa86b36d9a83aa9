"""
core/clock.py -- Wall-clock helpers shared by the store, lockout policy, and token issuer.

Components take a ``clock`` callable instead of calling datetime.now() inline so
tests can pin time (e.g. issue a token that is already expired).
"""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.isoformat()
