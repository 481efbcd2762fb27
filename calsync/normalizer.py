from __future__ import annotations

import logging
import re
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterator

from dateutil.rrule import rruleset, rrulestr
from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from calsync.models import DEFAULT_SUMMARY, CanonicalEvent, date_to_datetime


logger = logging.getLogger(__name__)

MAX_OCCURRENCES = 500
DEFAULT_DURATION = timedelta(hours=1)
ALL_DAY_DURATION = timedelta(days=1)

UNTIL_PATTERN = re.compile(r"UNTIL=(\d{8})(T\d{6})?(Z)?", re.IGNORECASE)


class ParseError(Exception):
    pass


def occurrence_stable_id(uid: str, start: datetime) -> str:
    utc_start = start.astimezone(timezone.utc)
    return f"{uid}_{utc_start.isoformat(timespec='milliseconds').replace('+00:00', 'Z')}"


def _is_date_only(value: Any) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)


def _decoded(vevent: ICEvent, name: str) -> Any:
    if vevent.get(name) is None:
        return None
    try:
        return vevent.decoded(name)
    except (ValueError, TypeError, KeyError) as exc:
        raise ParseError(f"Invalid {name} in event {vevent.get('UID', '')}: {exc}") from exc


def _date_value(vevent: ICEvent, name: str) -> date | datetime | None:
    value = _decoded(vevent, name)
    if value is None or isinstance(value, (date, datetime)):
        return value
    raise ParseError(f"Invalid {name} in event {vevent.get('UID', '')}: {value!r}")


def _text(vevent: ICEvent, name: str) -> str | None:
    value = vevent.get(name)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_cancelled(vevent: ICEvent) -> bool:
    return str(vevent.get("STATUS", "")).strip().upper() == "CANCELLED"


def _default_duration(dtstart_raw: date | datetime | None) -> timedelta:
    if _is_date_only(dtstart_raw):
        return ALL_DAY_DURATION
    return DEFAULT_DURATION


def _event_duration(vevent: ICEvent) -> timedelta:
    dtstart_raw = _date_value(vevent, "DTSTART")
    start = date_to_datetime(dtstart_raw)
    end = date_to_datetime(_date_value(vevent, "DTEND"))
    if start is not None and end is not None:
        return end - start
    duration = _decoded(vevent, "DURATION")
    if isinstance(duration, timedelta):
        return duration
    return _default_duration(dtstart_raw)


def _describe(vevent: ICEvent, fallback: dict[str, Any] | None = None) -> dict[str, Any]:
    fallback = fallback or {}
    return {
        "summary": _text(vevent, "SUMMARY") or fallback.get("summary") or DEFAULT_SUMMARY,
        "description": _text(vevent, "DESCRIPTION") or fallback.get("description"),
        "location": _text(vevent, "LOCATION") or fallback.get("location"),
    }


def extract_event_data(vevent: ICEvent, stable_id: str) -> CanonicalEvent | None:
    dtstart_raw = _date_value(vevent, "DTSTART")
    start = date_to_datetime(dtstart_raw)
    if start is None:
        return None
    end = date_to_datetime(_date_value(vevent, "DTEND"))
    if end is None:
        duration = _decoded(vevent, "DURATION")
        end = start + (duration if isinstance(duration, timedelta) else _default_duration(dtstart_raw))
    return CanonicalEvent(
        stable_id=stable_id,
        start=start,
        end=end,
        is_all_day=_is_date_only(dtstart_raw),
        **_describe(vevent),
    )


def _expansion_basis(dtstart_raw: date | datetime) -> datetime:
    # Floating and date-only starts expand as naive wall times, read back as UTC.
    if isinstance(dtstart_raw, datetime):
        return dtstart_raw
    return datetime.combine(dtstart_raw, time.min)


def _as_instant(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _align(value: date | datetime, basis: datetime) -> datetime:
    if _is_date_only(value):
        value = datetime.combine(value, basis.time())
    if basis.tzinfo is None:
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=basis.tzinfo)
    return value


def _align_until(rule_text: str, basis: datetime) -> str:
    def _rewrite(match: re.Match[str]) -> str:
        day_text, time_text, zulu = match.group(1), match.group(2), match.group(3)
        if time_text is None:
            until = datetime.strptime(day_text + "T235959", "%Y%m%dT%H%M%S")
        else:
            until = datetime.strptime(day_text + time_text, "%Y%m%dT%H%M%S")
        if zulu:
            until = until.replace(tzinfo=timezone.utc)
        if basis.tzinfo is None:
            if until.tzinfo is not None:
                until = until.replace(tzinfo=None)
            return "UNTIL=" + until.strftime("%Y%m%dT%H%M%S")
        if until.tzinfo is None:
            until = until.replace(tzinfo=basis.tzinfo)
        return "UNTIL=" + until.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    return UNTIL_PATTERN.sub(_rewrite, rule_text)


def _property_list(vevent: ICEvent, name: str) -> list[Any]:
    value = vevent.get(name)
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _list_values(vevent: ICEvent, name: str) -> Iterator[date | datetime]:
    for prop in _property_list(vevent, name):
        for item in getattr(prop, "dts", []):
            value = item.dt
            if isinstance(value, tuple):
                value = value[0]
            if isinstance(value, (date, datetime)):
                yield value


def _build_ruleset(vevent: ICEvent, basis: datetime) -> rruleset:
    rule_lines = []
    for rule in _property_list(vevent, "RRULE"):
        rule_text = rule.to_ical().decode("utf-8")
        rule_lines.append("RRULE:" + _align_until(rule_text, basis))
    ruleset = rrulestr("\n".join(rule_lines), dtstart=basis, forceset=True)
    for value in _list_values(vevent, "RDATE"):
        ruleset.rdate(_align(value, basis))
    for value in _list_values(vevent, "EXDATE"):
        ruleset.exdate(_align(value, basis))
    return ruleset


def expand_recurring_event(
    vevent: ICEvent,
    window_start: datetime,
    window_end: datetime,
    overrides: dict[datetime, ICEvent] | None = None,
) -> list[CanonicalEvent]:
    uid = str(vevent.get("UID", "")).strip()
    dtstart_raw = _date_value(vevent, "DTSTART")
    if not uid or dtstart_raw is None:
        return []
    overrides = overrides or {}
    is_all_day = _is_date_only(dtstart_raw)
    duration = _event_duration(vevent)
    template = _describe(vevent)

    try:
        ruleset = _build_ruleset(vevent, _expansion_basis(dtstart_raw))
    except (ValueError, TypeError) as exc:
        raise ParseError(f"Invalid recurrence rule for {uid}: {exc}") from exc

    events: list[CanonicalEvent] = []
    for occurrence in ruleset:
        start = _as_instant(occurrence)
        if start < window_start:
            continue
        if start >= window_end:
            break
        if len(events) >= MAX_OCCURRENCES:
            logger.warning("Recurring event %s truncated at %d occurrences", uid, MAX_OCCURRENCES)
            break

        stable_id = occurrence_stable_id(uid, start)
        override = overrides.get(start)
        if override is None:
            events.append(
                CanonicalEvent(
                    stable_id=stable_id,
                    start=start,
                    end=start + duration,
                    is_all_day=is_all_day,
                    **template,
                )
            )
            continue

        if _is_cancelled(override):
            logger.debug("Skipping cancelled occurrence %s", stable_id)
            continue
        moved = extract_event_data(override, stable_id)
        if moved is None:
            moved = CanonicalEvent(
                stable_id=stable_id,
                summary=template["summary"],
                start=start,
                end=start + duration,
                is_all_day=is_all_day,
            )
        elif _decoded(override, "DTEND") is None and _decoded(override, "DURATION") is None:
            moved.end = moved.start + duration
        described = _describe(override, fallback=template)
        moved.summary = described["summary"]
        moved.description = described["description"]
        moved.location = described["location"]
        events.append(moved)

    return events


def _collect_overrides(vevents: list[ICEvent]) -> dict[str, dict[datetime, ICEvent]]:
    overrides: dict[str, dict[datetime, ICEvent]] = {}
    for vevent in vevents:
        if vevent.get("RECURRENCE-ID") is None:
            continue
        uid = str(vevent.get("UID", "")).strip()
        recurrence_id = date_to_datetime(_date_value(vevent, "RECURRENCE-ID"))
        if not uid or recurrence_id is None:
            continue
        overrides.setdefault(uid, {})[recurrence_id.astimezone(timezone.utc)] = vevent
    return overrides


def _overlaps(event: CanonicalEvent, window_start: datetime, window_end: datetime) -> bool:
    if event.start >= window_end:
        return False
    return event.end > window_start or event.start >= window_start


def parse_calendar(ics_text: str | bytes) -> ICalendar:
    try:
        calendar_obj = ICalendar.from_ical(ics_text)
    except Exception as exc:
        raise ParseError(f"Malformed ICS data: {exc}") from exc
    if getattr(calendar_obj, "name", "") != "VCALENDAR":
        raise ParseError("ICS data does not contain a VCALENDAR.")
    return calendar_obj


def normalize(ics_text: str | bytes, window_start: datetime, window_end: datetime) -> list[CanonicalEvent]:
    calendar_obj = parse_calendar(ics_text)
    vevents = [component for component in calendar_obj.subcomponents if component.name == "VEVENT"]
    overrides = _collect_overrides(vevents)
    recurring_uids = {
        str(vevent.get("UID", "")).strip() for vevent in vevents if vevent.get("RRULE") is not None
    }

    events: dict[str, CanonicalEvent] = {}

    def _add(event: CanonicalEvent) -> None:
        if event.stable_id in events:
            logger.warning("Duplicate event id %s in feed; keeping the later definition", event.stable_id)
        events[event.stable_id] = event

    for vevent in vevents:
        if _is_cancelled(vevent):
            continue
        uid = str(vevent.get("UID", "")).strip()
        if not uid:
            logger.debug("Skipping VEVENT without UID")
            continue

        if vevent.get("RRULE") is not None:
            for event in expand_recurring_event(vevent, window_start, window_end, overrides.get(uid)):
                _add(event)
            continue

        stable_id = uid
        if vevent.get("RECURRENCE-ID") is not None:
            if uid in recurring_uids:
                continue
            recurrence_id = date_to_datetime(_date_value(vevent, "RECURRENCE-ID"))
            stable_id = occurrence_stable_id(uid, recurrence_id)

        event = extract_event_data(vevent, stable_id)
        if event is None:
            logger.debug("Skipping event %s without start", uid)
            continue
        if not _overlaps(event, window_start, window_end):
            logger.debug("Skipping event %s outside the sync window", stable_id)
            continue
        _add(event)

    logger.info("Parsed %d events from ICS", len(events))
    return list(events.values())
