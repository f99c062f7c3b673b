from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import requests

from stridecal.errors import (
    AuthenticationError,
    CalendarMutationError,
    CalendarQueryError,
    CredentialRefreshError,
)
from stridecal.models import CalendarEvent, GoogleConfig, TokenPair


logger = logging.getLogger(__name__)


def _error_text(exc: requests.RequestException) -> str:
    response = getattr(exc, "response", None)
    if response is not None:
        return f"HTTP {response.status_code}: {response.text[:300]}"
    return f"{type(exc).__name__}: {exc}"


def _segment(value: str) -> str:
    return quote(str(value), safe="")


class GoogleCalendarClient:
    """OAuth token endpoint and the subset of Calendar v3 the flows need."""

    def __init__(self, config: GoogleConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    def _events_endpoint(self, calendar_id: str, event_id: str | None = None) -> str:
        url = f"{self.config.calendar_api_base_url}/calendars/{_segment(calendar_id)}/events"
        if event_id is not None:
            url = f"{url}/{_segment(event_id)}"
        return url

    def _auth_headers(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _post_token(self, payload: dict[str, str]) -> dict[str, Any]:
        response = self.session.post(
            self.config.token_url,
            data={
                "client_id": self.config.client_id,
                "client_secret": self.config.client_secret,
                **payload,
            },
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ValueError("Google token response has no access_token.")
        return data

    def refresh_credentials(self, refresh_token: str) -> TokenPair:
        # Google usually omits refresh_token on refresh; the pair then carries "".
        if not refresh_token:
            raise CredentialRefreshError("google", "no refresh token stored for user")
        try:
            data = self._post_token({"grant_type": "refresh_token", "refresh_token": refresh_token})
        except requests.RequestException as exc:
            raise CredentialRefreshError("google", _error_text(exc)) from exc
        except ValueError as exc:
            raise CredentialRefreshError("google", str(exc)) from exc
        return TokenPair.from_token_response(data)

    def exchange_code(self, code: str, redirect_uri: str) -> tuple[TokenPair, str]:
        """Trade an authorization code for tokens; returns the pair and the ID token."""
        try:
            data = self._post_token(
                {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri}
            )
        except (requests.RequestException, ValueError) as exc:
            logger.error("Google code exchange failed: %s", exc)
            raise AuthenticationError("Google authorization failed.") from exc
        return TokenPair.from_token_response(data), str(data.get("id_token", "") or "")

    def verify_id_token(self, id_token: str) -> dict[str, Any]:
        if not id_token:
            raise AuthenticationError("Missing ID token.")
        try:
            response = self.session.get(
                self.config.tokeninfo_url,
                params={"id_token": id_token},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            claims = response.json()
        except (requests.RequestException, ValueError) as exc:
            raise AuthenticationError("Invalid Google token.") from exc
        if not isinstance(claims, dict) or not claims.get("sub"):
            raise AuthenticationError("Invalid Google token.")
        if not self.config.client_id:
            raise AuthenticationError("Google client_id is not configured; cannot check token audience.")
        if claims.get("aud") != self.config.client_id:
            raise AuthenticationError("Google token was issued for another client.")
        return claims

    def list_calendars(self, access_token: str) -> list[dict[str, Any]]:
        try:
            response = self.session.get(
                f"{self.config.calendar_api_base_url}/users/me/calendarList",
                headers=self._auth_headers(access_token),
                params={"minAccessRole": "writer"},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return [
                {
                    "id": str(item.get("id", "")),
                    "summary": str(item.get("summary", "") or ""),
                    "primary": bool(item.get("primary", False)),
                }
                for item in response.json().get("items", [])
            ]
        except requests.RequestException as exc:
            raise CalendarQueryError(f"calendar list: {_error_text(exc)}") from exc
        except (ValueError, AttributeError, TypeError) as exc:
            raise CalendarQueryError("calendar list: malformed response") from exc

    def list_events_by_property(
        self, access_token: str, calendar_id: str, key: str, value: str
    ) -> list[CalendarEvent]:
        try:
            response = self.session.get(
                self._events_endpoint(calendar_id),
                headers=self._auth_headers(access_token),
                params={"sharedExtendedProperty": f"{key}={value}", "singleEvents": "true"},
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return [CalendarEvent.from_api(item) for item in response.json().get("items", [])]
        except requests.RequestException as exc:
            raise CalendarQueryError(f"{key}={value} in {calendar_id}: {_error_text(exc)}") from exc
        except (ValueError, AttributeError, TypeError) as exc:
            raise CalendarQueryError(f"{key}={value} in {calendar_id}: malformed response") from exc

    def create_event(self, access_token: str, payload: dict[str, Any], calendar_id: str) -> CalendarEvent:
        logger.debug("Creating event %r in %s", payload.get("summary"), calendar_id)
        try:
            response = self.session.post(
                self._events_endpoint(calendar_id),
                headers=self._auth_headers(access_token),
                json=payload,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return CalendarEvent.from_api(response.json())
        except requests.RequestException as exc:
            raise CalendarMutationError(f"create in {calendar_id}: {_error_text(exc)}") from exc
        except (ValueError, AttributeError, TypeError) as exc:
            raise CalendarMutationError(f"create in {calendar_id}: malformed response") from exc

    def patch_event(
        self, access_token: str, event_id: str, payload: dict[str, Any], calendar_id: str
    ) -> CalendarEvent:
        logger.debug("Patching event %s in %s", event_id, calendar_id)
        try:
            response = self.session.patch(
                self._events_endpoint(calendar_id, event_id),
                headers=self._auth_headers(access_token),
                json=payload,
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            return CalendarEvent.from_api(response.json())
        except requests.RequestException as exc:
            raise CalendarMutationError(f"patch {event_id}: {_error_text(exc)}") from exc
        except (ValueError, AttributeError, TypeError) as exc:
            raise CalendarMutationError(f"patch {event_id}: malformed response") from exc

    def delete_event(self, access_token: str, event_id: str, calendar_id: str) -> None:
        logger.debug("Deleting event %s in %s", event_id, calendar_id)
        try:
            response = self.session.delete(
                self._events_endpoint(calendar_id, event_id),
                headers=self._auth_headers(access_token),
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise CalendarMutationError(f"delete {event_id}: {_error_text(exc)}") from exc
