from __future__ import annotations

import logging
from typing import Iterable

from calsync.change_detector import has_changed
from calsync.models import CanonicalEvent, ObservedEvent, PlannedUpdate, SyncPlan


logger = logging.getLogger(__name__)


def plan(desired: Iterable[CanonicalEvent], observed: Iterable[ObservedEvent]) -> SyncPlan:
    """Diff the feed's events against the calendar's, keyed by stable id.

    Observed events that carry no stable id are left out of the diff entirely:
    they are never matched and never deleted.
    """
    desired_map: dict[str, CanonicalEvent] = {event.stable_id: event for event in desired}
    observed_map: dict[str, ObservedEvent] = {}
    untracked = 0
    for event in observed:
        if not event.stable_id:
            untracked += 1
            continue
        observed_map[event.stable_id] = event
    if untracked:
        logger.debug("Ignoring %d calendar events without a stable id", untracked)

    result = SyncPlan()
    for stable_id, event in desired_map.items():
        current = observed_map.get(stable_id)
        if current is None:
            result.creates.append(event)
        elif has_changed(event, current):
            result.updates.append(PlannedUpdate(provider_id=current.provider_id, event=event))
        else:
            result.unchanged += 1

    for stable_id, current in observed_map.items():
        if stable_id not in desired_map:
            result.deletes.append(current)

    return result
