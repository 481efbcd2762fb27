import unittest
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from calsync.models import AppConfig, SyncConfig, parse_iso_datetime, sync_window


class ModelsTests(unittest.TestCase):
    def test_app_config_defaults(self) -> None:
        cfg = AppConfig.from_dict({})
        self.assertEqual(cfg.calendar.name, "ICS Sync")
        self.assertEqual(cfg.sync.interval_seconds, 60)
        self.assertEqual(cfg.google.token_uri, "https://oauth2.googleapis.com/token")
        self.assertFalse(cfg.google.has_credentials())
        self.assertEqual(cfg.logging.level, "INFO")

    def test_sync_config_is_clamped(self) -> None:
        cfg = SyncConfig.from_dict({"interval_seconds": 5, "months_back": -3, "months_ahead": 0, "timezone": " "})
        self.assertEqual(cfg.interval_seconds, 30)
        self.assertEqual(cfg.months_back, 0)
        self.assertEqual(cfg.months_ahead, 1)
        self.assertEqual(cfg.timezone, "UTC")

    def test_logging_level_falls_back(self) -> None:
        cfg = AppConfig.from_dict({"logging": {"level": "verbose"}, "google": {"token_file": "token.json"}})
        self.assertEqual(cfg.logging.level, "INFO")
        self.assertTrue(cfg.google.has_credentials())

    def test_parse_iso_datetime_handles_zulu_and_naive(self) -> None:
        self.assertEqual(parse_iso_datetime("2026-03-02T09:00:00Z"), datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(parse_iso_datetime("2026-03-02T09:00:00").tzinfo, timezone.utc)
        self.assertIsNone(parse_iso_datetime(None))

    def test_sync_window_spans_previous_month_to_next_year(self) -> None:
        start, end = sync_window(datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(start, datetime(2026, 9, 1, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2027, 10, 19, tzinfo=timezone.utc))

    def test_sync_window_uses_local_midnight(self) -> None:
        start, end = sync_window(
            datetime(2026, 1, 15, 3, 0, tzinfo=timezone.utc),
            months_back=2,
            months_ahead=6,
            tz_name="America/New_York",
        )
        tz = ZoneInfo("America/New_York")
        self.assertEqual(start, datetime(2025, 11, 1, tzinfo=tz))
        self.assertEqual(end, datetime(2026, 7, 14, tzinfo=tz))


if __name__ == "__main__":
    unittest.main()
