from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calsync.models import CanonicalEvent, GoogleConfig, ObservedEvent, date_to_datetime, parse_iso_datetime


logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar"]
CALENDAR_DESCRIPTION = "Synced from ICS feed by calsync"
PAGE_SIZE = 2500


class ProviderError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConflictError(ProviderError):
    pass


class AuthenticationError(ProviderError):
    pass


def _status_of(exc: HttpError) -> int | None:
    status = getattr(exc, "status_code", None)
    if status is None and getattr(exc, "resp", None) is not None:
        status = getattr(exc.resp, "status", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def _normalize_calendar_name(value: str) -> str:
    return re.sub(r"\s+", " ", str(value or "").strip()).casefold()


def _utc_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_google_date(value: dict[str, Any] | None) -> datetime | None:
    if not value:
        return None
    if value.get("dateTime"):
        return parse_iso_datetime(value["dateTime"])
    if value.get("date"):
        return date_to_datetime(date.fromisoformat(value["date"]))
    return None


def build_credentials(config: GoogleConfig) -> Credentials:
    if config.refresh_token:
        return Credentials(
            token=None,
            refresh_token=config.refresh_token,
            client_id=config.client_id,
            client_secret=config.client_secret,
            token_uri=config.token_uri,
            scopes=SCOPES,
        )
    if config.token_file:
        creds = Credentials.from_authorized_user_file(config.token_file, SCOPES)
        if not creds.valid and creds.refresh_token:
            try:
                creds.refresh(Request())
            except RefreshError as exc:
                raise AuthenticationError(f"Token refresh failed: {exc}") from exc
        return creds
    raise AuthenticationError("Google credentials are not configured.")


def build_event_body(event: CanonicalEvent) -> dict[str, Any]:
    body: dict[str, Any] = {
        "summary": event.summary,
        "iCalUID": event.stable_id,
        "status": "confirmed",
    }
    if event.description:
        body["description"] = event.description
    if event.location:
        body["location"] = event.location
    if event.is_all_day:
        start_date = event.start.astimezone(timezone.utc).date()
        # All-day end dates are exclusive and must fall after the start date.
        end_date = max(event.end.astimezone(timezone.utc).date(), start_date + timedelta(days=1))
        body["start"] = {"date": start_date.isoformat()}
        body["end"] = {"date": end_date.isoformat()}
    else:
        body["start"] = {"dateTime": _utc_iso(event.start)}
        body["end"] = {"dateTime": _utc_iso(event.end)}
    return body


def observed_from_item(item: dict[str, Any]) -> ObservedEvent:
    start = item.get("start") or {}
    return ObservedEvent(
        provider_id=str(item.get("id", "")),
        stable_id=item.get("iCalUID") or None,
        summary=item.get("summary") or "",
        description=item.get("description") or None,
        location=item.get("location") or None,
        start=_parse_google_date(start),
        end=_parse_google_date(item.get("end")),
        is_all_day=bool(start.get("date")) and not start.get("dateTime"),
    )


class GoogleCalendarService:
    def __init__(self, config: GoogleConfig, service: Any = None, timezone_name: str = "UTC") -> None:
        self.config = config
        self.timezone_name = timezone_name
        self._service = service

    def _connect(self) -> Any:
        if self._service is None:
            credentials = build_credentials(self.config)
            self._service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        return self._service

    def _execute(self, request: Any, label: str) -> Any:
        try:
            return request.execute()
        except HttpError as exc:
            status = _status_of(exc)
            if status == 409:
                raise ConflictError(f"{label} conflict: {exc}", status_code=status) from exc
            raise ProviderError(f"{label} failed: {exc}", status_code=status) from exc
        except RefreshError as exc:
            raise AuthenticationError(f"{label} failed, credentials rejected: {exc}") from exc

    def list_calendars(self) -> list[dict[str, Any]]:
        service = self._connect()
        calendars: list[dict[str, Any]] = []
        page_token = None
        while True:
            response = self._execute(
                service.calendarList().list(pageToken=page_token),
                "calendarList.list",
            )
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return calendars

    def ensure_calendar(self, calendar_id: str, name: str) -> str:
        calendars = self.list_calendars()
        if calendar_id:
            for item in calendars:
                if item.get("id") == calendar_id:
                    return calendar_id
            logger.warning("Configured calendar %s not found; falling back to name lookup", calendar_id)

        name_key = _normalize_calendar_name(name)
        same_name = sorted(
            (item for item in calendars if item.get("id") and _normalize_calendar_name(item.get("summary", "")) == name_key),
            key=lambda item: item["id"],
        )
        if same_name:
            logger.info("Found existing calendar: %s (%s)", name, same_name[0]["id"])
            return same_name[0]["id"]

        created = self._execute(
            self._connect().calendars().insert(
                body={
                    "summary": name,
                    "description": CALENDAR_DESCRIPTION,
                    "timeZone": self.timezone_name,
                }
            ),
            "calendars.insert",
        )
        created_id = created.get("id")
        if not created_id:
            raise ProviderError("Failed to create calendar: no ID returned")
        logger.info("Created new calendar: %s (%s)", name, created_id)
        return created_id

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[ObservedEvent]:
        service = self._connect()
        events: list[ObservedEvent] = []
        page_token = None
        while True:
            response = self._execute(
                service.events().list(
                    calendarId=calendar_id,
                    timeMin=_utc_iso(time_min),
                    timeMax=_utc_iso(time_max),
                    singleEvents=True,
                    showDeleted=False,
                    maxResults=PAGE_SIZE,
                    pageToken=page_token,
                ),
                "events.list",
            )
            for item in response.get("items", []):
                if item.get("id"):
                    events.append(observed_from_item(item))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.info("Fetched %d events from Google Calendar", len(events))
        return events

    def create_event(self, calendar_id: str, event: CanonicalEvent) -> None:
        self._execute(
            self._connect().events().insert(calendarId=calendar_id, body=build_event_body(event)),
            "events.insert",
        )

    def update_event(self, calendar_id: str, provider_id: str, event: CanonicalEvent) -> None:
        self._execute(
            self._connect().events().update(
                calendarId=calendar_id,
                eventId=provider_id,
                body=build_event_body(event),
            ),
            "events.update",
        )

    def delete_event(self, calendar_id: str, provider_id: str) -> None:
        self._execute(
            self._connect().events().delete(calendarId=calendar_id, eventId=provider_id),
            "events.delete",
        )

    def find_event_by_stable_id(self, calendar_id: str, stable_id: str) -> ObservedEvent | None:
        response = self._execute(
            self._connect().events().list(calendarId=calendar_id, iCalUID=stable_id, showDeleted=True),
            "events.list",
        )
        for item in response.get("items", []):
            if item.get("id"):
                return observed_from_item(item)
        return None
