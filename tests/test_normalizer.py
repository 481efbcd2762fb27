import unittest
from datetime import datetime, timedelta, timezone

from calsync.normalizer import MAX_OCCURRENCES, ParseError, normalize, occurrence_stable_id


WINDOW_START = datetime(2026, 1, 1, tzinfo=timezone.utc)
WINDOW_END = datetime(2027, 1, 1, tzinfo=timezone.utc)


def _calendar(*events: str) -> str:
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//Test//Feed//EN"]
    for event in events:
        lines.append("BEGIN:VEVENT")
        lines.extend(event.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def _by_id(events):
    return {event.stable_id: event for event in events}


class SingleEventTests(unittest.TestCase):
    def test_extracts_fields(self) -> None:
        ics = _calendar(
            """
UID:evt-1
SUMMARY:Standup
DESCRIPTION:Daily sync
LOCATION:Room 4
DTSTART:20260305T090000Z
DTEND:20260305T093000Z
"""
        )
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual(len(events), 1)
        event = events[0]
        self.assertEqual(event.stable_id, "evt-1")
        self.assertEqual(event.summary, "Standup")
        self.assertEqual(event.description, "Daily sync")
        self.assertEqual(event.location, "Room 4")
        self.assertEqual(event.start, datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(event.end, datetime(2026, 3, 5, 9, 30, tzinfo=timezone.utc))
        self.assertFalse(event.is_all_day)

    def test_defaults_summary_and_end(self) -> None:
        ics = _calendar("UID:evt-2\nDTSTART:20260305T090000Z")
        event = normalize(ics, WINDOW_START, WINDOW_END)[0]
        self.assertEqual(event.summary, "Untitled Event")
        self.assertIsNone(event.description)
        self.assertIsNone(event.location)
        self.assertEqual(event.end - event.start, timedelta(hours=1))

    def test_all_day_event(self) -> None:
        ics = _calendar("UID:holiday\nSUMMARY:Holiday\nDTSTART;VALUE=DATE:20260305\nDTEND;VALUE=DATE:20260306")
        event = normalize(ics, WINDOW_START, WINDOW_END)[0]
        self.assertTrue(event.is_all_day)
        self.assertEqual(event.start, datetime(2026, 3, 5, tzinfo=timezone.utc))
        self.assertEqual(event.end, datetime(2026, 3, 6, tzinfo=timezone.utc))

    def test_all_day_event_without_end_lasts_one_day(self) -> None:
        ics = _calendar("UID:birthday\nSUMMARY:Birthday\nDTSTART;VALUE=DATE:20260305")
        event = normalize(ics, WINDOW_START, WINDOW_END)[0]
        self.assertTrue(event.is_all_day)
        self.assertEqual(event.start, datetime(2026, 3, 5, tzinfo=timezone.utc))
        self.assertEqual(event.end, datetime(2026, 3, 6, tzinfo=timezone.utc))

    def test_events_outside_window_are_skipped(self) -> None:
        ics = _calendar(
            "UID:old\nDTSTART:20240305T090000Z",
            "UID:later\nDTSTART:20280305T090000Z",
            "UID:spanning\nDTSTART;VALUE=DATE:20251231\nDTEND;VALUE=DATE:20260102",
            "UID:current\nDTSTART:20260305T090000Z",
        )
        ids = {event.stable_id for event in normalize(ics, WINDOW_START, WINDOW_END)}
        self.assertEqual(ids, {"spanning", "current"})

    def test_invalid_date_value_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            normalize(_calendar("UID:broken\nDTSTART:notadate"), WINDOW_START, WINDOW_END)

    def test_skips_cancelled_missing_uid_and_missing_start(self) -> None:
        ics = _calendar(
            "UID:cancelled\nSTATUS:CANCELLED\nDTSTART:20260305T090000Z",
            "SUMMARY:No uid\nDTSTART:20260305T090000Z",
            "UID:no-start\nSUMMARY:Floating idea",
            "UID:kept\nDTSTART:20260305T090000Z",
        )
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual([event.stable_id for event in events], ["kept"])

    def test_duplicate_uid_keeps_later_definition(self) -> None:
        ics = _calendar(
            "UID:dup\nSUMMARY:First\nDTSTART:20260305T090000Z",
            "UID:dup\nSUMMARY:Second\nDTSTART:20260306T090000Z",
        )
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].summary, "Second")

    def test_malformed_feed_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            normalize("this is not a calendar", WINDOW_START, WINDOW_END)

    def test_feed_without_vcalendar_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            normalize("BEGIN:VEVENT\r\nUID:x\r\nEND:VEVENT\r\n", WINDOW_START, WINDOW_END)


class RecurringEventTests(unittest.TestCase):
    def test_weekly_occurrences_get_derived_ids(self) -> None:
        ics = _calendar(
            """
UID:weekly
SUMMARY:Planning
DTSTART:20260302T090000Z
DTEND:20260302T093000Z
RRULE:FREQ=WEEKLY;COUNT=4
"""
        )
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual(len(events), 4)
        self.assertEqual(
            [event.stable_id for event in events],
            [
                "weekly_2026-03-02T09:00:00.000Z",
                "weekly_2026-03-09T09:00:00.000Z",
                "weekly_2026-03-16T09:00:00.000Z",
                "weekly_2026-03-23T09:00:00.000Z",
            ],
        )
        for event in events:
            self.assertEqual(event.summary, "Planning")
            self.assertEqual(event.end - event.start, timedelta(minutes=30))

    def test_window_skips_early_and_stops_at_end(self) -> None:
        ics = _calendar("UID:daily\nDTSTART:20260101T090000Z\nRRULE:FREQ=DAILY;COUNT=30")
        window_start = datetime(2026, 1, 10, tzinfo=timezone.utc)
        window_end = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
        events = normalize(ics, window_start, window_end)
        self.assertEqual([event.start.day for event in events], [10, 11, 12, 13, 14])

    def test_occurrences_capped(self) -> None:
        ics = _calendar("UID:forever\nDTSTART:20260101T080000Z\nRRULE:FREQ=DAILY")
        events = normalize(ics, WINDOW_START, datetime(2028, 1, 1, tzinfo=timezone.utc))
        self.assertEqual(len(events), MAX_OCCURRENCES)
        self.assertEqual(events[0].stable_id, "forever_2026-01-01T08:00:00.000Z")

    def test_exactly_cap_occurrences_in_window_is_not_truncated(self) -> None:
        ics = _calendar("UID:daily\nDTSTART:20260101T080000Z\nRRULE:FREQ=DAILY")
        window_end = WINDOW_START + timedelta(days=MAX_OCCURRENCES)
        with self.assertLogs("calsync.normalizer", level="INFO") as logs:
            events = normalize(ics, WINDOW_START, window_end)
        self.assertEqual(len(events), MAX_OCCURRENCES)
        self.assertFalse(any("truncated" in line for line in logs.output))

    def test_ids_stable_across_overlapping_windows(self) -> None:
        ics = _calendar("UID:daily\nDTSTART:20260101T090000Z\nRRULE:FREQ=DAILY")
        first = _by_id(
            normalize(ics, datetime(2026, 1, 1, tzinfo=timezone.utc), datetime(2026, 1, 20, tzinfo=timezone.utc))
        )
        second = _by_id(
            normalize(ics, datetime(2026, 1, 10, tzinfo=timezone.utc), datetime(2026, 2, 1, tzinfo=timezone.utc))
        )
        overlap = set(first) & set(second)
        self.assertEqual(len(overlap), 10)
        self.assertIn("daily_2026-01-15T09:00:00.000Z", overlap)
        for stable_id in overlap:
            self.assertEqual(first[stable_id].start, second[stable_id].start)

    def test_until_and_all_day_recurrence(self) -> None:
        ics = _calendar("UID:allday\nDTSTART;VALUE=DATE:20260101\nRRULE:FREQ=DAILY;UNTIL=20260103")
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual(len(events), 3)
        self.assertTrue(all(event.is_all_day for event in events))
        self.assertEqual(events[0].stable_id, "allday_2026-01-01T00:00:00.000Z")
        self.assertEqual(events[0].end - events[0].start, timedelta(days=1))

    def test_exdate_removes_occurrence(self) -> None:
        ics = _calendar(
            "UID:weekly\nDTSTART:20260302T090000Z\nRRULE:FREQ=WEEKLY;COUNT=3\nEXDATE:20260309T090000Z"
        )
        ids = [event.stable_id for event in normalize(ics, WINDOW_START, WINDOW_END)]
        self.assertEqual(ids, ["weekly_2026-03-02T09:00:00.000Z", "weekly_2026-03-16T09:00:00.000Z"])

    def test_override_replaces_occurrence(self) -> None:
        ics = _calendar(
            "UID:weekly\nSUMMARY:Planning\nDTSTART:20260302T090000Z\nDTEND:20260302T093000Z\nRRULE:FREQ=WEEKLY;COUNT=3",
            "UID:weekly\nRECURRENCE-ID:20260309T090000Z\nSUMMARY:Moved\nDTSTART:20260309T100000Z\nDTEND:20260309T110000Z",
        )
        events = _by_id(normalize(ics, WINDOW_START, WINDOW_END))
        self.assertEqual(len(events), 3)
        moved = events["weekly_2026-03-09T09:00:00.000Z"]
        self.assertEqual(moved.summary, "Moved")
        self.assertEqual(moved.start, datetime(2026, 3, 9, 10, 0, tzinfo=timezone.utc))
        self.assertEqual(moved.end, datetime(2026, 3, 9, 11, 0, tzinfo=timezone.utc))

    def test_cancelled_override_drops_occurrence(self) -> None:
        ics = _calendar(
            "UID:weekly\nDTSTART:20260302T090000Z\nRRULE:FREQ=WEEKLY;COUNT=3",
            "UID:weekly\nRECURRENCE-ID:20260309T090000Z\nSTATUS:CANCELLED\nDTSTART:20260309T090000Z",
        )
        events = _by_id(normalize(ics, WINDOW_START, WINDOW_END))
        self.assertEqual(len(events), 2)
        self.assertNotIn("weekly_2026-03-09T09:00:00.000Z", events)

    def test_named_timezone_keeps_wall_clock_across_dst(self) -> None:
        ics = _calendar("UID:ny\nDTSTART;TZID=America/New_York:20260302T090000\nRRULE:FREQ=WEEKLY;COUNT=2")
        events = normalize(ics, WINDOW_START, WINDOW_END)
        self.assertEqual(
            [event.start for event in events],
            [
                datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc),
                datetime(2026, 3, 9, 13, 0, tzinfo=timezone.utc),
            ],
        )

    def test_occurrence_stable_id_format(self) -> None:
        start = datetime(2026, 3, 2, 9, 0, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(occurrence_stable_id("abc", start), "abc_2026-03-02T07:00:00.000Z")


if __name__ == "__main__":
    unittest.main()
