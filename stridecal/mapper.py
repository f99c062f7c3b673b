from __future__ import annotations

from datetime import timedelta
from typing import Any, Mapping

from stridecal.models import ActivityRecord, EventPayload


ACTIVITY_URL_TEMPLATE = "https://www.strava.com/activities/{activity_id}"
DESCRIPTION_TEMPLATE = "View on Strava: {url}\n\nType: {kind}\nDistance: {distance_km:.2f} km"

TAG_ACTIVITY_ID = "activity_id"
TAG_ACTIVITY_KIND = "activity_kind"

# Strava update keys that change what the calendar shows: title, activity type, privacy.
RELEVANT_UPDATE_FIELDS = frozenset({"title", "type", "private"})


def activity_tag_value(activity_id: int | str) -> str:
    return str(int(activity_id))


def is_relevant_update(updates: Mapping[str, Any] | None) -> bool:
    if not updates:
        return False
    return any(key in RELEVANT_UPDATE_FIELDS for key in updates)


def to_event_payload(activity: ActivityRecord) -> EventPayload:
    # Elapsed time, not moving time: pauses stay inside the event window.
    end = activity.start + timedelta(seconds=activity.elapsed_seconds)
    description = DESCRIPTION_TEMPLATE.format(
        url=ACTIVITY_URL_TEMPLATE.format(activity_id=activity.activity_id),
        kind=activity.kind,
        distance_km=activity.distance_meters / 1000,
    )
    return EventPayload(
        summary=activity.name,
        start=activity.start,
        end=end,
        description=description,
        tag={
            TAG_ACTIVITY_ID: activity_tag_value(activity.activity_id),
            TAG_ACTIVITY_KIND: activity.kind,
        },
    )
