from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta


DEFAULT_CALENDAR_NAME = "ICS Sync"
DEFAULT_SUMMARY = "Untitled Event"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def date_to_datetime(value: datetime | date | None) -> datetime | None:
    """Date-only values are anchored at UTC midnight."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _resolve_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except Exception:
        return ZoneInfo("UTC")


@dataclass
class FeedConfig:
    url: str = ""
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "FeedConfig":
        data = data or {}
        return cls(
            url=str(data.get("url", "") or "").strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class GoogleConfig:
    client_id: str = ""
    client_secret: str = ""
    refresh_token: str = ""
    token_uri: str = DEFAULT_TOKEN_URI
    token_file: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_id=str(data.get("client_id", "") or "").strip(),
            client_secret=str(data.get("client_secret", "") or "").strip(),
            refresh_token=str(data.get("refresh_token", "") or "").strip(),
            token_uri=str(data.get("token_uri", DEFAULT_TOKEN_URI) or "").strip() or DEFAULT_TOKEN_URI,
            token_file=str(data.get("token_file", "") or "").strip(),
        )

    def has_credentials(self) -> bool:
        if self.token_file:
            return True
        return bool(self.client_id and self.client_secret and self.refresh_token)


@dataclass
class CalendarConfig:
    calendar_id: str = ""
    name: str = DEFAULT_CALENDAR_NAME

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(
            calendar_id=str(data.get("calendar_id", "") or "").strip(),
            name=str(data.get("name", DEFAULT_CALENDAR_NAME) or "").strip() or DEFAULT_CALENDAR_NAME,
        )


@dataclass
class SyncConfig:
    interval_seconds: int = 60
    months_back: int = 1
    months_ahead: int = 12
    timezone: str = "UTC"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            interval_seconds=max(30, int(data.get("interval_seconds", 60))),
            months_back=max(0, int(data.get("months_back", 1))),
            months_ahead=max(1, int(data.get("months_ahead", 12))),
            timezone=str(data.get("timezone", "UTC") or "").strip() or "UTC",
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        level = str(data.get("level", "INFO") or "").strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        return cls(level=level)


@dataclass
class AppConfig:
    feed: FeedConfig = field(default_factory=FeedConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            feed=FeedConfig.from_dict(data.get("feed")),
            google=GoogleConfig.from_dict(data.get("google")),
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            sync=SyncConfig.from_dict(data.get("sync")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CanonicalEvent:
    stable_id: str
    summary: str
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None
    is_all_day: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["start"] = serialize_datetime(self.start)
        payload["end"] = serialize_datetime(self.end)
        return payload


@dataclass
class ObservedEvent:
    provider_id: str
    stable_id: str | None = None
    summary: str = ""
    description: str | None = None
    location: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    is_all_day: bool = False


@dataclass
class PlannedUpdate:
    provider_id: str
    event: CanonicalEvent


@dataclass
class SyncPlan:
    creates: list[CanonicalEvent] = field(default_factory=list)
    updates: list[PlannedUpdate] = field(default_factory=list)
    deletes: list[ObservedEvent] = field(default_factory=list)
    unchanged: int = 0

    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class SyncReport:
    status: str
    message: str
    duration_ms: int
    trigger: str
    result: SyncResult = field(default_factory=SyncResult)
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "trigger": self.trigger,
            "result": self.result.to_dict(),
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()


def sync_window(
    now: datetime,
    months_back: int = 1,
    months_ahead: int = 12,
    tz_name: str = "UTC",
) -> tuple[datetime, datetime]:
    local_now = _ensure_tz(now).astimezone(_resolve_timezone(tz_name))
    first_of_month = datetime.combine(local_now.date().replace(day=1), time.min, tzinfo=local_now.tzinfo)
    start = first_of_month - relativedelta(months=max(0, months_back))
    today = datetime.combine(local_now.date(), time.min, tzinfo=local_now.tzinfo)
    end = today + relativedelta(months=max(1, months_ahead))
    return start, end
