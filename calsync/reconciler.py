from __future__ import annotations

import logging
from typing import Any

from calsync.google_calendar import ConflictError
from calsync.models import CanonicalEvent, SyncPlan, SyncResult


logger = logging.getLogger(__name__)


def _recover_conflict(provider: Any, calendar_id: str, event: CanonicalEvent) -> bool:
    try:
        existing = provider.find_event_by_stable_id(calendar_id, event.stable_id)
        if existing is None:
            logger.error('Failed to find existing event "%s" after conflict', event.summary)
            return False
        provider.update_event(calendar_id, existing.provider_id, event)
    except Exception as exc:
        logger.error('Failed to update after conflict "%s": %s', event.summary, exc)
        return False
    logger.info("Updated (was conflict): %s", event.summary)
    return True


def apply_plan(provider: Any, calendar_id: str, plan: SyncPlan) -> SyncResult:
    """Apply every action of ``plan`` against ``provider``, one at a time.

    A failing action is logged and skipped so the rest of the plan still runs.
    A create that collides with an event the provider already holds is turned
    into an update of that event; if the event cannot be found the action is
    dropped and counted nowhere.
    """
    result = SyncResult(unchanged=plan.unchanged)

    for event in plan.creates:
        try:
            provider.create_event(calendar_id, event)
        except ConflictError:
            if _recover_conflict(provider, calendar_id, event):
                result.updated += 1
            continue
        except Exception as exc:
            logger.error('Failed to create event "%s": %s', event.summary, exc)
            continue
        logger.info("Created: %s", event.summary)
        result.created += 1

    for update in plan.updates:
        try:
            provider.update_event(calendar_id, update.provider_id, update.event)
        except Exception as exc:
            logger.error('Failed to update event "%s": %s', update.event.summary, exc)
            continue
        logger.info("Updated: %s", update.event.summary)
        result.updated += 1

    for observed in plan.deletes:
        try:
            provider.delete_event(calendar_id, observed.provider_id)
        except Exception as exc:
            logger.error('Failed to delete event "%s": %s', observed.summary or observed.stable_id, exc)
            continue
        logger.info("Deleted: %s", observed.summary or observed.stable_id)
        result.deleted += 1

    return result
