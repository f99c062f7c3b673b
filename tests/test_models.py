import unittest
from datetime import datetime, timedelta, timezone

from stridecal.errors import InvalidNotificationError
from stridecal.models import (
    ActivityRecord,
    AppConfig,
    CalendarEvent,
    FlowOutcome,
    FlowResult,
    TokenPair,
    UserRecord,
    WebhookNotification,
    format_instant,
)


class ModelsTests(unittest.TestCase):
    def test_app_config_defaults(self) -> None:
        cfg = AppConfig.from_dict({})
        self.assertEqual(cfg.google.default_calendar_id, "primary")
        self.assertEqual(cfg.strava.oauth_url, "https://www.strava.com/oauth/token")
        self.assertEqual(cfg.server.cors_origins, ["*"])
        self.assertEqual(cfg.logging.level, "INFO")

    def test_server_config_accepts_comma_separated_origins(self) -> None:
        cfg = AppConfig.from_dict({"server": {"cors_origins": "https://a.example, https://b.example,"}})
        self.assertEqual(cfg.server.cors_origins, ["https://a.example", "https://b.example"])

    def test_format_instant_uses_millisecond_utc(self) -> None:
        value = datetime(2023, 1, 1, 12, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
        self.assertEqual(format_instant(value), "2023-01-01T10:00:00.123Z")

    def test_user_record_with_updates_returns_new_value(self) -> None:
        user = UserRecord(google_user_id="g-1", strava_access_token="old")
        updated = user.with_updates(strava_access_token="new")
        self.assertEqual(user.strava_access_token, "old")
        self.assertEqual(updated.strava_access_token, "new")
        self.assertEqual(updated.google_user_id, "g-1")

    def test_user_record_target_calendar_falls_back_to_default(self) -> None:
        self.assertEqual(UserRecord(google_user_id="g").target_calendar_id(), "primary")
        self.assertEqual(
            UserRecord(google_user_id="g", selected_calendar_id="cal-9").target_calendar_id(),
            "cal-9",
        )

    def test_token_pair_tolerates_missing_refresh_token(self) -> None:
        pair = TokenPair.from_token_response({"access_token": "at", "expires_in": 3599})
        self.assertEqual(pair.access_token, "at")
        self.assertEqual(pair.refresh_token, "")
        self.assertIsNone(pair.expires_at)

    def test_notification_from_strava_payload(self) -> None:
        notification = WebhookNotification.from_payload(
            {
                "aspect_type": "update",
                "event_time": 1516126040,
                "object_id": 1360128428,
                "object_type": "activity",
                "owner_id": 134815,
                "subscription_id": 120475,
                "updates": {"title": "Messy"},
            }
        )
        self.assertEqual(notification.aspect_type, "update")
        self.assertEqual(notification.object_id, 1360128428)
        self.assertEqual(notification.owner_id, "134815")
        self.assertEqual(notification.updates, {"title": "Messy"})
        self.assertEqual(notification.event_time, 1516126040)

    def test_notification_rejects_missing_fields(self) -> None:
        with self.assertRaises(InvalidNotificationError):
            WebhookNotification.from_payload({"aspect_type": "create", "owner_id": 1})
        with self.assertRaises(InvalidNotificationError):
            WebhookNotification.from_payload({"object_id": 1, "owner_id": 1})
        with self.assertRaises(InvalidNotificationError):
            WebhookNotification.from_payload({"aspect_type": "create", "object_id": "abc", "owner_id": 1})
        with self.assertRaises(InvalidNotificationError):
            WebhookNotification.from_payload(["not", "an", "object"])

    def test_activity_from_api_prefers_type_then_sport_type(self) -> None:
        activity = ActivityRecord.from_api(
            {
                "id": 42,
                "name": "Lunch Ride",
                "sport_type": "GravelRide",
                "start_date": "2024-05-01T12:00:00Z",
                "elapsed_time": 1800,
                "distance": 15234.5,
            }
        )
        self.assertEqual(activity.kind, "GravelRide")
        self.assertEqual(activity.start, datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(activity.distance_meters, 15234.5)

    def test_calendar_event_from_api_reads_shared_properties(self) -> None:
        event = CalendarEvent.from_api(
            {
                "id": "evt1",
                "summary": "Morning Run",
                "start": {"dateTime": "2023-01-01T10:00:00.000Z"},
                "end": {"dateTime": "2023-01-01T11:00:00.000Z"},
                "extendedProperties": {"shared": {"activity_id": "123", "activity_kind": "Run"}},
            }
        )
        self.assertEqual(event.event_id, "evt1")
        self.assertEqual(event.shared_properties["activity_id"], "123")
        self.assertEqual(event.end - event.start, timedelta(hours=1))

    def test_flow_result_acted_flag(self) -> None:
        self.assertTrue(FlowResult(outcome=FlowOutcome.CREATED, activity_id=1).acted)
        self.assertFalse(FlowResult(outcome=FlowOutcome.SKIPPED_IRRELEVANT, activity_id=1).acted)
        self.assertEqual(
            FlowResult(outcome=FlowOutcome.DELETED, activity_id=1, event_id="e").to_dict()["outcome"],
            "deleted",
        )


if __name__ == "__main__":
    unittest.main()
