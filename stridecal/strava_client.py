from __future__ import annotations

import logging
from typing import Any

import requests

from stridecal.errors import ActivityFetchError, AuthenticationError, CredentialRefreshError
from stridecal.models import ActivityRecord, StravaConfig, TokenPair


logger = logging.getLogger(__name__)


def _error_text(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        return f"HTTP {response.status_code}: {response.text[:300]}"
    return f"{type(exc).__name__}: {exc}"


class StravaClient:
    def __init__(self, config: StravaConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def is_configured(self) -> bool:
        return bool(self.config.client_id and self.config.client_secret)

    def _post_token(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = self.session.post(
            self.config.oauth_url,
            json={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                **payload,
            },
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ValueError("Strava token response has no access_token.")
        return data

    def refresh_credentials(self, refresh_token: str) -> TokenPair:
        if not refresh_token:
            raise CredentialRefreshError("strava", "no refresh token stored for user")
        try:
            data = self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})
        except requests.RequestException as exc:
            raise CredentialRefreshError("strava", _error_text(exc)) from exc
        except ValueError as exc:
            raise CredentialRefreshError("strava", str(exc)) from exc
        return TokenPair.from_token_response(data)

    def exchange_code(self, code: str) -> tuple[TokenPair, str]:
        """Trade an authorization code for tokens; returns the pair and the athlete id."""
        try:
            data = self._post_token({"grant_type": "authorization_code", "code": code})
        except (requests.RequestException, ValueError) as exc:
            logger.error("Strava code exchange failed: %s", exc)
            raise AuthenticationError("Strava authorization failed.") from exc
        athlete = data.get("athlete") or {}
        athlete_id = str(athlete.get("id", "")).strip()
        if not athlete_id:
            raise AuthenticationError("Strava token response has no athlete id.")
        return TokenPair.from_token_response(data), athlete_id

    def get_activity(self, access_token: str, activity_id: int | str) -> ActivityRecord:
        logger.debug("Fetching Strava activity %s", activity_id)
        try:
            response = self.session.get(
                f"{self.config.api_base_url}/activities/{activity_id}",
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return ActivityRecord.from_api(response.json())
        except requests.RequestException as exc:
            raise ActivityFetchError(f"activity {activity_id}: {_error_text(exc)}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise ActivityFetchError(f"activity {activity_id}: malformed response ({exc})") from exc
