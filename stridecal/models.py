from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from stridecal.errors import InvalidNotificationError


DEFAULT_CALENDAR_ID = "primary"


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


def format_instant(value: datetime) -> str:
    """Render an instant as UTC with millisecond precision, e.g. ``2023-01-01T10:00:00.000Z``."""
    utc = _ensure_tz(value).astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S") + f".{utc.microsecond // 1000:03d}Z"


@dataclass
class StravaConfig:
    client_id: str = ""
    client_secret: str = ""
    verify_token: str = ""
    api_base_url: str = "https://www.strava.com/api/v3"
    oauth_url: str = "https://www.strava.com/oauth/token"
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StravaConfig":
        data = data or {}
        return cls(
            client_id=str(data.get("client_id", "")).strip(),
            client_secret=str(data.get("client_secret", "")).strip(),
            verify_token=str(data.get("verify_token", "")).strip(),
            api_base_url=str(data.get("api_base_url", "https://www.strava.com/api/v3")).strip().rstrip("/")
            or "https://www.strava.com/api/v3",
            oauth_url=str(data.get("oauth_url", "https://www.strava.com/oauth/token")).strip()
            or "https://www.strava.com/oauth/token",
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class GoogleConfig:
    client_id: str = ""
    client_secret: str = ""
    token_url: str = "https://oauth2.googleapis.com/token"
    tokeninfo_url: str = "https://oauth2.googleapis.com/tokeninfo"
    calendar_api_base_url: str = "https://www.googleapis.com/calendar/v3"
    default_calendar_id: str = DEFAULT_CALENDAR_ID
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "GoogleConfig":
        data = data or {}
        return cls(
            client_id=str(data.get("client_id", "")).strip(),
            client_secret=str(data.get("client_secret", "")).strip(),
            token_url=str(data.get("token_url", "https://oauth2.googleapis.com/token")).strip()
            or "https://oauth2.googleapis.com/token",
            tokeninfo_url=str(data.get("tokeninfo_url", "https://oauth2.googleapis.com/tokeninfo")).strip()
            or "https://oauth2.googleapis.com/tokeninfo",
            calendar_api_base_url=str(
                data.get("calendar_api_base_url", "https://www.googleapis.com/calendar/v3")
            ).strip().rstrip("/")
            or "https://www.googleapis.com/calendar/v3",
            default_calendar_id=str(data.get("default_calendar_id", DEFAULT_CALENDAR_ID)).strip()
            or DEFAULT_CALENDAR_ID,
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class StorageConfig:
    users_db_path: str = "data/users.db"
    delivery_retention: int = 1000

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StorageConfig":
        data = data or {}
        return cls(
            users_db_path=str(data.get("users_db_path", "data/users.db")).strip() or "data/users.db",
            delivery_retention=max(1, int(data.get("delivery_retention", 1000))),
        )


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = field(default_factory=lambda: ["*"])
    admin_token: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ServerConfig":
        data = data or {}
        origins = data.get("cors_origins", ["*"])
        if isinstance(origins, str):
            origins = origins.split(",")
        return cls(
            host=str(data.get("host", "0.0.0.0")).strip() or "0.0.0.0",
            port=int(data.get("port", 8080)),
            cors_origins=[str(x).strip() for x in origins if str(x).strip()],
            admin_token=str(data.get("admin_token", "")).strip(),
        )


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        return cls(level=str(data.get("level", "INFO")).strip().upper() or "INFO")


@dataclass
class AppConfig:
    strava: StravaConfig = field(default_factory=StravaConfig)
    google: GoogleConfig = field(default_factory=GoogleConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            strava=StravaConfig.from_dict(data.get("strava")),
            google=GoogleConfig.from_dict(data.get("google")),
            storage=StorageConfig.from_dict(data.get("storage")),
            server=ServerConfig.from_dict(data.get("server")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str = ""
    expires_at: int | None = None

    @classmethod
    def from_token_response(cls, data: Mapping[str, Any]) -> "TokenPair":
        expires_at = data.get("expires_at")
        return cls(
            access_token=str(data.get("access_token", "") or ""),
            refresh_token=str(data.get("refresh_token", "") or ""),
            expires_at=int(expires_at) if expires_at is not None else None,
        )


@dataclass(frozen=True)
class UserRecord:
    google_user_id: str
    email: str = ""
    strava_athlete_id: str = ""
    strava_access_token: str = ""
    strava_refresh_token: str = ""
    google_access_token: str = ""
    google_refresh_token: str = ""
    selected_calendar_id: str = ""

    def with_updates(self, **kwargs: Any) -> "UserRecord":
        return replace(self, **kwargs)

    def target_calendar_id(self, default: str = DEFAULT_CALENDAR_ID) -> str:
        return self.selected_calendar_id or default

    @property
    def has_strava(self) -> bool:
        return bool(self.strava_athlete_id)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def public_dict(self) -> dict[str, Any]:
        return {
            "google_user_id": self.google_user_id,
            "email": self.email,
            "has_strava": self.has_strava,
            "selected_calendar_id": self.target_calendar_id(),
        }


@dataclass(frozen=True)
class WebhookNotification:
    aspect_type: str
    object_id: int
    owner_id: str
    object_type: str = "activity"
    updates: Mapping[str, Any] | None = None
    event_time: int | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any] | None) -> "WebhookNotification":
        if not isinstance(payload, Mapping):
            raise InvalidNotificationError("Webhook payload must be a JSON object.")
        aspect_type = str(payload.get("aspect_type", "") or "").strip().lower()
        if not aspect_type:
            raise InvalidNotificationError("Webhook payload is missing aspect_type.")
        raw_object_id = payload.get("object_id")
        raw_owner_id = payload.get("owner_id")
        if raw_object_id is None or raw_owner_id is None:
            raise InvalidNotificationError("Webhook payload is missing object_id or owner_id.")
        try:
            object_id = int(raw_object_id)
            owner_id = str(int(raw_owner_id))
        except (TypeError, ValueError) as exc:
            raise InvalidNotificationError("object_id and owner_id must be numeric.") from exc
        updates = payload.get("updates")
        if updates is not None and not isinstance(updates, Mapping):
            raise InvalidNotificationError("updates must be an object when present.")
        event_time = payload.get("event_time")
        return cls(
            aspect_type=aspect_type,
            object_id=object_id,
            owner_id=owner_id,
            object_type=str(payload.get("object_type", "activity") or "activity").strip().lower(),
            updates=dict(updates) if updates is not None else None,
            event_time=int(event_time) if isinstance(event_time, (int, float)) else None,
        )


@dataclass(frozen=True)
class ActivityRecord:
    activity_id: int
    name: str
    kind: str
    start: datetime
    elapsed_seconds: int
    distance_meters: float

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "ActivityRecord":
        start = parse_iso_datetime(data.get("start_date"))
        if start is None:
            raise ValueError("Activity has no start_date.")
        return cls(
            activity_id=int(data["id"]),
            name=str(data.get("name", "") or ""),
            kind=str(data.get("type") or data.get("sport_type") or ""),
            start=start,
            elapsed_seconds=int(data.get("elapsed_time", 0) or 0),
            distance_meters=float(data.get("distance", 0) or 0),
        )


@dataclass(frozen=True)
class CalendarEvent:
    event_id: str
    summary: str = ""
    start: datetime | None = None
    end: datetime | None = None
    description: str = ""
    shared_properties: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "CalendarEvent":
        start = data.get("start") or {}
        end = data.get("end") or {}
        shared = (data.get("extendedProperties") or {}).get("shared") or {}
        return cls(
            event_id=str(data.get("id", "")),
            summary=str(data.get("summary", "") or ""),
            start=parse_iso_datetime(start.get("dateTime")),
            end=parse_iso_datetime(end.get("dateTime")),
            description=str(data.get("description", "") or ""),
            shared_properties={str(k): str(v) for k, v in shared.items()},
        )


@dataclass(frozen=True)
class EventPayload:
    summary: str
    start: datetime
    end: datetime
    description: str
    tag: Mapping[str, str]

    def to_api(self) -> dict[str, Any]:
        return {
            "summary": self.summary,
            "start": {"dateTime": format_instant(self.start)},
            "end": {"dateTime": format_instant(self.end)},
            "description": self.description,
            "extendedProperties": {"shared": dict(self.tag)},
        }


class FlowOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    SKIPPED_ALREADY_EXISTS = "skipped_already_exists"
    SKIPPED_NO_EXISTING_EVENT = "skipped_no_existing_event"
    SKIPPED_IRRELEVANT = "skipped_irrelevant"
    SKIPPED_UNKNOWN_USER = "skipped_unknown_user"
    SKIPPED_UNKNOWN_KIND = "skipped_unknown_kind"
    SKIPPED_UNSUPPORTED_OBJECT = "skipped_unsupported_object"


ACTED_OUTCOMES = {FlowOutcome.CREATED, FlowOutcome.UPDATED, FlowOutcome.DELETED}


@dataclass(frozen=True)
class FlowResult:
    outcome: FlowOutcome
    activity_id: int
    event_id: str = ""
    message: str = ""

    @property
    def acted(self) -> bool:
        return self.outcome in ACTED_OUTCOMES

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "activity_id": self.activity_id,
            "event_id": self.event_id,
            "message": self.message,
            "acted": self.acted,
        }
