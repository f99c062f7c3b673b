from __future__ import annotations

import logging
from typing import Any, Mapping

from stridecal.errors import SyncError
from stridecal.models import FlowOutcome, FlowResult, WebhookNotification
from stridecal.sync_flows import SyncFlows
from stridecal.user_store import UserStore


logger = logging.getLogger(__name__)


class WebhookRouter:
    def __init__(self, user_store: UserStore, flows: SyncFlows) -> None:
        self.user_store = user_store
        self.flows = flows

    def route(self, payload: Mapping[str, Any]) -> FlowResult:
        return self.dispatch(WebhookNotification.from_payload(payload))

    def dispatch(self, notification: WebhookNotification) -> FlowResult:
        activity_id = notification.object_id
        if notification.object_type != "activity":
            logger.info(
                "Ignoring %s notification for %s %s",
                notification.aspect_type,
                notification.object_type,
                activity_id,
            )
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_UNSUPPORTED_OBJECT,
                activity_id=activity_id,
                message=f"object_type {notification.object_type} ignored",
            )

        user = self.user_store.get_by_strava_athlete_id(notification.owner_id)
        if user is None:
            # Acknowledge so the sender stops retrying for accounts we do not manage.
            logger.warning("Received webhook for unknown athlete %s, ignoring", notification.owner_id)
            return FlowResult(
                outcome=FlowOutcome.SKIPPED_UNKNOWN_USER,
                activity_id=activity_id,
                message="user not found",
            )

        try:
            if notification.aspect_type == "create":
                result = self.flows.create(user, activity_id)
            elif notification.aspect_type == "update":
                result = self.flows.update(user, activity_id, notification.updates)
            elif notification.aspect_type == "delete":
                result = self.flows.delete(user, activity_id)
            else:
                logger.info("Ignoring unknown aspect_type %r for activity %s", notification.aspect_type, activity_id)
                return FlowResult(
                    outcome=FlowOutcome.SKIPPED_UNKNOWN_KIND,
                    activity_id=activity_id,
                    message=f"aspect_type {notification.aspect_type} ignored",
                )
        except SyncError:
            logger.error(
                "%s flow failed for activity %s (user %s)",
                notification.aspect_type,
                activity_id,
                user.google_user_id,
                exc_info=True,
            )
            raise
        return result
