from __future__ import annotations

import logging
from typing import Any, Mapping

from stridecal.credentials import CredentialCoordinator
from stridecal.google_client import GoogleCalendarClient
from stridecal.mapper import TAG_ACTIVITY_ID, activity_tag_value, is_relevant_update, to_event_payload
from stridecal.models import DEFAULT_CALENDAR_ID, CalendarEvent, FlowOutcome, FlowResult, UserRecord
from stridecal.strava_client import StravaClient


logger = logging.getLogger(__name__)


def find_existing_event(
    google: GoogleCalendarClient,
    access_token: str,
    activity_id: int | str,
    calendar_id: str,
) -> CalendarEvent | None:
    """Return the event tagged with ``activity_id`` in ``calendar_id``, if any.

    Duplicates can be left behind by an earlier partial failure; the first one
    in provider order wins and the rest are only reported.
    """
    matches = google.list_events_by_property(
        access_token, calendar_id, TAG_ACTIVITY_ID, activity_tag_value(activity_id)
    )
    if not matches:
        return None
    if len(matches) > 1:
        logger.warning(
            "Activity %s has %d tagged events in %s, using %s (others: %s)",
            activity_id,
            len(matches),
            calendar_id,
            matches[0].event_id,
            ", ".join(event.event_id for event in matches[1:]),
        )
    return matches[0]


class SyncFlows:
    def __init__(
        self,
        coordinator: CredentialCoordinator,
        strava: StravaClient,
        google: GoogleCalendarClient,
        default_calendar_id: str = DEFAULT_CALENDAR_ID,
    ) -> None:
        self.coordinator = coordinator
        self.strava = strava
        self.google = google
        self.default_calendar_id = default_calendar_id or DEFAULT_CALENDAR_ID

    def create(self, user: UserRecord, activity_id: int) -> FlowResult:
        logger.debug("Handling create for activity %s (user %s)", activity_id, user.google_user_id)
        credentials = self.coordinator.prepare(user)
        calendar_id = credentials.user.target_calendar_id(self.default_calendar_id)

        existing = find_existing_event(self.google, credentials.google.access_token, activity_id, calendar_id)
        if existing is not None:
            logger.info("Event %s already exists for activity %s, skipping", existing.event_id, activity_id)
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_ALREADY_EXISTS,
                activity_id=activity_id,
                event_id=existing.event_id,
                message="event already exists",
            )

        activity = self.strava.get_activity(credentials.strava.access_token, activity_id)
        payload = to_event_payload(activity)
        created = self.google.create_event(credentials.google.access_token, payload.to_api(), calendar_id)
        logger.info("Created event %s for activity %s in %s", created.event_id, activity_id, calendar_id)
        return FlowResult(
            outcome=FlowOutcome.CREATED,
            activity_id=activity_id,
            event_id=created.event_id,
            message="event created",
        )

    def update(self, user: UserRecord, activity_id: int, updates: Mapping[str, Any] | None) -> FlowResult:
        # Runs before any token refresh so irrelevant edits cost no network calls.
        if not is_relevant_update(updates):
            logger.info("No relevant updates for activity %s (%s), skipping", activity_id, sorted(updates or {}))
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_IRRELEVANT,
                activity_id=activity_id,
                message="no relevant fields changed",
            )

        credentials = self.coordinator.prepare(user)
        calendar_id = credentials.user.target_calendar_id(self.default_calendar_id)

        existing = find_existing_event(self.google, credentials.google.access_token, activity_id, calendar_id)
        if existing is None:
            logger.warning("No event found for activity %s, skipping update", activity_id)
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_NO_EXISTING_EVENT,
                activity_id=activity_id,
                message="no event to update",
            )

        activity = self.strava.get_activity(credentials.strava.access_token, activity_id)
        payload = to_event_payload(activity)
        self.google.patch_event(credentials.google.access_token, existing.event_id, payload.to_api(), calendar_id)
        logger.info("Updated event %s for activity %s", existing.event_id, activity_id)
        return FlowResult(
            outcome=FlowOutcome.UPDATED,
            activity_id=activity_id,
            event_id=existing.event_id,
            message="event updated",
        )

    def delete(self, user: UserRecord, activity_id: int) -> FlowResult:
        logger.debug("Handling delete for activity %s (user %s)", activity_id, user.google_user_id)
        credentials = self.coordinator.prepare(user)
        calendar_id = credentials.user.target_calendar_id(self.default_calendar_id)

        existing = find_existing_event(self.google, credentials.google.access_token, activity_id, calendar_id)
        if existing is None:
            logger.info("No event found for activity %s, nothing to delete", activity_id)
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_NO_EXISTING_EVENT,
                activity_id=activity_id,
                message="no event to delete",
            )

        self.google.delete_event(credentials.google.access_token, existing.event_id, calendar_id)
        logger.info("Deleted event %s for activity %s", existing.event_id, activity_id)
        return FlowResult(
            outcome=FlowOutcome.DELETED,
            activity_id=activity_id,
            event_id=existing.event_id,
            message="event deleted",
        )
