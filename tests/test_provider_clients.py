import unittest
from unittest import mock

import requests

from stridecal.errors import (
    ActivityFetchError,
    AuthenticationError,
    CalendarMutationError,
    CalendarQueryError,
    CredentialRefreshError,
)
from stridecal.google_client import GoogleCalendarClient
from stridecal.models import GoogleConfig, StravaConfig
from stridecal.strava_client import StravaClient


def _response(status: int = 200, payload=None) -> mock.Mock:
    response = mock.Mock()
    response.status_code = status
    response.text = str(payload)
    response.json.return_value = payload if payload is not None else {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(f"{status} error", response=response)
    else:
        response.raise_for_status.return_value = None
    return response


class StravaClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.client = StravaClient(StravaConfig(client_id="cid", client_secret="secret"), session=self.session)

    def test_refresh_posts_refresh_grant(self) -> None:
        self.session.post.return_value = _response(
            payload={"access_token": "at", "refresh_token": "rt", "expires_at": 1700000000}
        )

        pair = self.client.refresh_credentials("old-rt")

        self.assertEqual((pair.access_token, pair.refresh_token, pair.expires_at), ("at", "rt", 1700000000))
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], "https://www.strava.com/oauth/token")
        self.assertEqual(kwargs["json"]["grant_type"], "refresh_token")
        self.assertEqual(kwargs["json"]["refresh_token"], "old-rt")
        self.assertEqual(kwargs["json"]["client_id"], "cid")

    def test_refresh_failure_is_translated(self) -> None:
        self.session.post.return_value = _response(400, {"message": "Bad Request"})
        with self.assertRaises(CredentialRefreshError) as ctx:
            self.client.refresh_credentials("old-rt")
        self.assertEqual(ctx.exception.provider, "strava")

    def test_refresh_without_token_fails_fast(self) -> None:
        with self.assertRaises(CredentialRefreshError):
            self.client.refresh_credentials("")
        self.session.post.assert_not_called()

    def test_exchange_code_returns_athlete_id(self) -> None:
        self.session.post.return_value = _response(
            payload={"access_token": "at", "refresh_token": "rt", "athlete": {"id": 134815}}
        )
        pair, athlete_id = self.client.exchange_code("code-1")
        self.assertEqual(pair.access_token, "at")
        self.assertEqual(athlete_id, "134815")

    def test_exchange_code_failure_is_authentication_error(self) -> None:
        self.session.post.return_value = _response(401, {"message": "Authorization Error"})
        with self.assertRaises(AuthenticationError):
            self.client.exchange_code("bad")

    def test_get_activity_decodes_record(self) -> None:
        self.session.get.return_value = _response(
            payload={
                "id": 123,
                "name": "Test Run",
                "type": "Run",
                "start_date": "2023-01-01T10:00:00Z",
                "elapsed_time": 3600,
                "distance": 10000.0,
            }
        )

        activity = self.client.get_activity("at", 123)

        self.assertEqual(activity.name, "Test Run")
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://www.strava.com/api/v3/activities/123")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer at"})

    def test_get_activity_failure_is_translated(self) -> None:
        self.session.get.return_value = _response(404, {"message": "Record Not Found"})
        with self.assertRaises(ActivityFetchError):
            self.client.get_activity("at", 123)

    def test_get_activity_connection_error_is_translated(self) -> None:
        self.session.get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(ActivityFetchError):
            self.client.get_activity("at", 123)


class GoogleCalendarClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.client = GoogleCalendarClient(
            GoogleConfig(client_id="gid", client_secret="gsecret"), session=self.session
        )

    def test_refresh_posts_form_encoded_grant(self) -> None:
        self.session.post.return_value = _response(payload={"access_token": "gat", "expires_in": 3599})

        pair = self.client.refresh_credentials("grt")

        self.assertEqual(pair.access_token, "gat")
        self.assertEqual(pair.refresh_token, "")
        kwargs = self.session.post.call_args.kwargs
        self.assertEqual(kwargs["data"]["grant_type"], "refresh_token")
        self.assertEqual(kwargs["data"]["refresh_token"], "grt")

    def test_refresh_failure_is_translated(self) -> None:
        self.session.post.return_value = _response(400, {"error": "invalid_grant"})
        with self.assertRaises(CredentialRefreshError) as ctx:
            self.client.refresh_credentials("grt")
        self.assertEqual(ctx.exception.provider, "google")

    def test_list_events_by_property_queries_shared_tag(self) -> None:
        self.session.get.return_value = _response(
            payload={"items": [{"id": "evt1", "extendedProperties": {"shared": {"activity_id": "123"}}}]}
        )

        events = self.client.list_events_by_property("gat", "team@group.calendar.google.com", "activity_id", "123")

        self.assertEqual([e.event_id for e in events], ["evt1"])
        args, kwargs = self.session.get.call_args
        self.assertEqual(
            args[0],
            "https://www.googleapis.com/calendar/v3/calendars/team%40group.calendar.google.com/events",
        )
        self.assertEqual(kwargs["params"]["sharedExtendedProperty"], "activity_id=123")
        self.assertEqual(kwargs["headers"], {"Authorization": "Bearer gat"})

    def test_query_failure_is_translated(self) -> None:
        self.session.get.return_value = _response(503, {"error": "backendError"})
        with self.assertRaises(CalendarQueryError):
            self.client.list_events_by_property("gat", "primary", "activity_id", "123")

    def test_malformed_event_listing_is_a_query_error(self) -> None:
        self.session.get.return_value = _response(payload=["not", "an", "object"])
        with self.assertRaises(CalendarQueryError):
            self.client.list_events_by_property("gat", "primary", "activity_id", "123")

        self.session.get.return_value = _response(
            payload={"items": [{"id": "evt1", "start": {"dateTime": "yesterday-ish"}}]}
        )
        with self.assertRaises(CalendarQueryError):
            self.client.list_events_by_property("gat", "primary", "activity_id", "123")

        self.session.get.return_value = _response(payload={"items": ["evt1"]})
        with self.assertRaises(CalendarQueryError):
            self.client.list_events_by_property("gat", "primary", "activity_id", "123")

    def test_malformed_mutation_body_is_a_mutation_error(self) -> None:
        self.session.post.return_value = _response(payload=["evt1"])
        with self.assertRaises(CalendarMutationError):
            self.client.create_event("gat", {"summary": "x"}, "primary")

    def test_patch_uses_patch_verb(self) -> None:
        self.session.patch.return_value = _response(payload={"id": "evt1", "summary": "New"})

        event = self.client.patch_event("gat", "evt1", {"summary": "New"}, "primary")

        self.assertEqual(event.summary, "New")
        args, kwargs = self.session.patch.call_args
        self.assertTrue(args[0].endswith("/calendars/primary/events/evt1"))
        self.assertEqual(kwargs["json"], {"summary": "New"})

    def test_mutation_failures_are_translated(self) -> None:
        self.session.post.return_value = _response(403, {"error": "forbidden"})
        self.session.delete.return_value = _response(410, {"error": "deleted"})
        with self.assertRaises(CalendarMutationError):
            self.client.create_event("gat", {"summary": "x"}, "primary")
        with self.assertRaises(CalendarMutationError):
            self.client.delete_event("gat", "evt1", "primary")

    def test_verify_id_token_checks_audience(self) -> None:
        self.session.get.return_value = _response(payload={"sub": "g-1", "aud": "gid", "email": "a@b.c"})
        self.assertEqual(self.client.verify_id_token("idt")["sub"], "g-1")

        self.session.get.return_value = _response(payload={"sub": "g-1", "aud": "someone-else"})
        with self.assertRaises(AuthenticationError):
            self.client.verify_id_token("idt")

    def test_verify_id_token_requires_configured_client_id(self) -> None:
        client = GoogleCalendarClient(GoogleConfig(client_id="", client_secret="gsecret"), session=self.session)
        self.session.get.return_value = _response(payload={"sub": "g-1", "aud": "any-other-app"})

        with self.assertRaises(AuthenticationError):
            client.verify_id_token("idt")

    def test_verify_id_token_rejects_invalid_token(self) -> None:
        self.session.get.return_value = _response(400, {"error": "invalid_token"})
        with self.assertRaises(AuthenticationError):
            self.client.verify_id_token("idt")

    def test_list_calendars(self) -> None:
        self.session.get.return_value = _response(
            payload={"items": [{"id": "primary-id", "summary": "Me", "primary": True}, {"id": "c2"}]}
        )
        calendars = self.client.list_calendars("gat")
        self.assertEqual(calendars[0], {"id": "primary-id", "summary": "Me", "primary": True})
        self.assertEqual(calendars[1], {"id": "c2", "summary": "", "primary": False})
        self.assertEqual(self.session.get.call_args.kwargs["params"], {"minAccessRole": "writer"})


if __name__ == "__main__":
    unittest.main()
