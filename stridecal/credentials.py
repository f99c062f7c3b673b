from __future__ import annotations

import logging
from dataclasses import dataclass

from stridecal.errors import UserStoreError
from stridecal.google_client import GoogleCalendarClient
from stridecal.models import TokenPair, UserRecord
from stridecal.strava_client import StravaClient
from stridecal.user_store import UserStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedCredentials:
    strava: TokenPair
    google: TokenPair
    user: UserRecord


class CredentialCoordinator:
    """Refreshes both providers' credentials for a user before any provider call.

    A refresh failure on either side propagates and aborts the caller's flow.
    When either pair changed, only the rotated token columns are written, once,
    so preference or link changes made while the flow ran are kept. A failed save
    is logged and the flow continues on the in-memory tokens, which stay valid
    upstream regardless of local durability.
    """

    def __init__(self, strava: StravaClient, google: GoogleCalendarClient, user_store: UserStore) -> None:
        self.strava = strava
        self.google = google
        self.user_store = user_store

    def prepare(self, user: UserRecord) -> PreparedCredentials:
        try:
            strava_tokens = self.strava.refresh_credentials(user.strava_refresh_token)
        except Exception:
            logger.error("Failed to refresh Strava token for user %s", user.google_user_id)
            raise
        try:
            google_tokens = self.google.refresh_credentials(user.google_refresh_token)
        except Exception:
            logger.error("Failed to refresh Google token for user %s", user.google_user_id)
            raise

        updates: dict[str, str] = {}
        if strava_tokens.access_token != user.strava_access_token:
            updates["strava_access_token"] = strava_tokens.access_token
        if strava_tokens.refresh_token and strava_tokens.refresh_token != user.strava_refresh_token:
            updates["strava_refresh_token"] = strava_tokens.refresh_token
        if google_tokens.access_token != user.google_access_token:
            updates["google_access_token"] = google_tokens.access_token
        if google_tokens.refresh_token and google_tokens.refresh_token != user.google_refresh_token:
            updates["google_refresh_token"] = google_tokens.refresh_token

        refreshed = user.with_updates(**updates) if updates else user
        if updates:
            try:
                self.user_store.save_tokens(user.google_user_id, **updates)
            except UserStoreError as exc:
                logger.warning(
                    "Failed to save rotated tokens for user %s, proceeding anyway: %s",
                    user.google_user_id,
                    exc,
                )

        return PreparedCredentials(
            strava=TokenPair(
                access_token=strava_tokens.access_token,
                refresh_token=refreshed.strava_refresh_token,
                expires_at=strava_tokens.expires_at,
            ),
            google=TokenPair(
                access_token=google_tokens.access_token,
                refresh_token=refreshed.google_refresh_token,
                expires_at=google_tokens.expires_at,
            ),
            user=refreshed,
        )
