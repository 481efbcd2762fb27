from __future__ import annotations

from datetime import datetime, timedelta

from calsync.models import CanonicalEvent, ObservedEvent


# Maximum drift between a desired and an observed instant still treated as equal.
TIME_TOLERANCE = timedelta(seconds=60)


def _drifted(desired: datetime, observed: datetime | None) -> bool:
    if observed is None:
        return False
    return abs(desired - observed) > TIME_TOLERANCE


def has_changed(desired: CanonicalEvent, observed: ObservedEvent) -> bool:
    if desired.summary != observed.summary:
        return True
    if (desired.description or "") != (observed.description or ""):
        return True
    if (desired.location or "") != (observed.location or ""):
        return True
    if _drifted(desired.start, observed.start):
        return True
    return _drifted(desired.end, observed.end)
