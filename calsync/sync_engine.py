from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime, timezone
from typing import Any

from calsync.config_manager import ConfigManager
from calsync.feed import fetch_feed
from calsync.google_calendar import AuthenticationError, GoogleCalendarService
from calsync.models import AppConfig, SyncReport, SyncResult, sync_window
from calsync.normalizer import normalize
from calsync.planner import plan
from calsync.reconciler import apply_plan


logger = logging.getLogger(__name__)

HISTORY_SIZE = 50


def reconcile(
    provider: Any,
    calendar_id: str,
    window_start: datetime,
    window_end: datetime,
    *,
    feed_url: str | None = None,
    ics_text: str | bytes | None = None,
    timeout_seconds: int = 30,
) -> SyncResult:
    """Run one full pass: fetch, normalize, diff against the calendar, apply.

    Feed and parse failures propagate before the provider is touched.
    """
    if ics_text is None:
        if not feed_url:
            raise ValueError("Either feed_url or ics_text is required")
        ics_text = fetch_feed(feed_url, timeout_seconds)

    desired = normalize(ics_text, window_start, window_end)
    observed = provider.list_events(calendar_id, window_start, window_end)
    sync_plan = plan(desired, observed)
    logger.info(
        "Planned %d creates, %d updates, %d deletes (%d unchanged)",
        len(sync_plan.creates),
        len(sync_plan.updates),
        len(sync_plan.deletes),
        sync_plan.unchanged,
    )
    return apply_plan(provider, calendar_id, sync_plan)


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


class SyncEngine:
    def __init__(self, config_manager: ConfigManager) -> None:
        self.config_manager = config_manager
        self._provider: GoogleCalendarService | None = None
        self._provider_key: tuple[str, ...] | None = None
        self._run_lock = threading.Lock()
        self._history: deque[SyncReport] = deque(maxlen=HISTORY_SIZE)

    def _get_provider(self, config: AppConfig) -> GoogleCalendarService:
        google = config.google
        key = (
            google.client_id,
            google.client_secret,
            google.refresh_token,
            google.token_uri,
            google.token_file,
            config.sync.timezone,
        )
        if self._provider is None or self._provider_key != key:
            self._provider = GoogleCalendarService(google, timezone_name=config.sync.timezone)
            self._provider_key = key
        return self._provider

    def reset_provider(self) -> None:
        self._provider = None
        self._provider_key = None

    def _resolve_calendar_id(self, provider: GoogleCalendarService, config: AppConfig) -> str:
        calendar_id = provider.ensure_calendar(config.calendar.calendar_id, config.calendar.name)
        if calendar_id != config.calendar.calendar_id:
            self.config_manager.update({"calendar": {"calendar_id": calendar_id}})
        return calendar_id

    def recent_reports(self, limit: int = 20) -> list[dict[str, Any]]:
        reports = list(self._history)[-max(1, int(limit)) :]
        return [report.to_dict() for report in reversed(reports)]

    def _finish(self, report: SyncReport) -> SyncReport:
        self._history.append(report)
        return report

    def run_once(
        self,
        trigger: str = "manual",
        window_start_override: datetime | None = None,
        window_end_override: datetime | None = None,
    ) -> SyncReport:
        with self._run_lock:
            return self._run_once(trigger, window_start_override, window_end_override)

    def _run_once(
        self,
        trigger: str,
        window_start_override: datetime | None,
        window_end_override: datetime | None,
    ) -> SyncReport:
        started_at = datetime.now(timezone.utc)
        logger.info("Starting sync (%s)...", trigger)

        try:
            config = self.config_manager.load()
            if not config.feed.url or not config.google.has_credentials():
                message = "Feed URL or Google credentials missing. Sync skipped."
                logger.warning(message)
                return self._finish(
                    SyncReport(status="skipped", message=message, duration_ms=_elapsed_ms(started_at), trigger=trigger)
                )

            if (window_start_override is None) ^ (window_end_override is None):
                raise ValueError("window_start_override and window_end_override must both be provided")
            if window_start_override is not None and window_end_override is not None:
                window_start = window_start_override.astimezone(timezone.utc)
                window_end = window_end_override.astimezone(timezone.utc)
                if window_end < window_start:
                    raise ValueError("window_end_override must be later than window_start_override")
            else:
                window_start, window_end = sync_window(
                    started_at,
                    months_back=config.sync.months_back,
                    months_ahead=config.sync.months_ahead,
                    tz_name=config.sync.timezone,
                )

            provider = self._get_provider(config)
            calendar_id = self._resolve_calendar_id(provider, config)
            result = reconcile(
                provider,
                calendar_id,
                window_start,
                window_end,
                feed_url=config.feed.url,
                timeout_seconds=config.feed.timeout_seconds,
            )
            duration_ms = _elapsed_ms(started_at)
            logger.info(
                "Sync complete in %dms: created=%d updated=%d deleted=%d unchanged=%d",
                duration_ms,
                result.created,
                result.updated,
                result.deleted,
                result.unchanged,
            )
            return self._finish(
                SyncReport(
                    status="success",
                    message=(
                        f"Created {result.created}, updated {result.updated}, "
                        f"deleted {result.deleted}, unchanged {result.unchanged}."
                    ),
                    duration_ms=duration_ms,
                    trigger=trigger,
                    result=result,
                )
            )
        except Exception as exc:
            if isinstance(exc, AuthenticationError):
                self.reset_provider()
            error_message = f"{type(exc).__name__}: {exc}"
            logger.error("Sync failed: %s", error_message, exc_info=True)
            return self._finish(
                SyncReport(
                    status="error",
                    message=error_message,
                    duration_ms=_elapsed_ms(started_at),
                    trigger=trigger,
                )
            )
