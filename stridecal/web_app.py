from __future__ import annotations

import hmac
import logging
import os
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from stridecal.config_manager import ConfigManager
from stridecal.credentials import CredentialCoordinator
from stridecal.errors import (
    AthleteAlreadyLinkedError,
    AuthenticationError,
    CalendarQueryError,
    CredentialRefreshError,
    InvalidNotificationError,
    SyncError,
    UserStoreError,
)
from stridecal.google_client import GoogleCalendarClient
from stridecal.models import FlowResult, UserRecord
from stridecal.router import WebhookRouter
from stridecal.strava_client import StravaClient
from stridecal.sync_flows import SyncFlows
from stridecal.user_store import UserStore


logger = logging.getLogger(__name__)


class GoogleLoginRequest(BaseModel):
    code: str = Field(min_length=1)
    redirect_uri: str = ""


class StravaConnectRequest(BaseModel):
    code: str = Field(min_length=1)


class UserPreferencesRequest(BaseModel):
    selected_calendar_id: str | None = None


class AppContext:
    def __init__(self, config_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        config = self.config_manager.load()
        self.config = config
        self.user_store = UserStore(
            config.storage.users_db_path,
            delivery_retention=config.storage.delivery_retention,
        )
        self.strava = StravaClient(config.strava)
        self.google = GoogleCalendarClient(config.google)
        self.coordinator = CredentialCoordinator(self.strava, self.google, self.user_store)
        self.flows = SyncFlows(
            self.coordinator,
            self.strava,
            self.google,
            default_calendar_id=config.google.default_calendar_id,
        )
        self.router = WebhookRouter(self.user_store, self.flows)


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Malformed Authorization header")
    return token.strip()


def create_app(context: AppContext | None = None) -> FastAPI:
    if context is None:
        context = AppContext(config_path=os.getenv("STRIDECAL_CONFIG_PATH", "config.yaml"))

    app = FastAPI(title="stridecal", version="0.1.0")
    app.state.context = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=context.config.server.cors_origins,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Admin-Token"],
    )

    def _authenticated_user_id(authorization: str | None) -> str:
        token = _bearer_token(authorization)
        try:
            claims = context.google.verify_id_token(token)
        except AuthenticationError as exc:
            raise HTTPException(status_code=401, detail="Unauthorized") from exc
        return str(claims["sub"])

    def _record(payload: Any, outcome: str, message: str) -> None:
        body = payload if isinstance(payload, dict) else {}
        try:
            context.user_store.record_delivery(
                aspect_type=str(body.get("aspect_type", "")),
                object_id=str(body.get("object_id", "")),
                owner_id=str(body.get("owner_id", "")),
                outcome=outcome,
                message=message,
            )
        except UserStoreError as exc:
            logger.warning("Could not record webhook delivery: %s", exc)

    def _require_admin(token: str | None) -> None:
        expected = context.config.server.admin_token
        if not expected:
            raise HTTPException(status_code=403, detail="admin endpoints are disabled")
        if not token or not hmac.compare_digest(token.encode("utf-8"), expected.encode("utf-8")):
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config(x_admin_token: str | None = Header(default=None)) -> dict[str, Any]:
        _require_admin(x_admin_token)
        return context.config_manager.masked()

    @app.get("/webhook")
    def verify_subscription(
        challenge: str = Query("", alias="hub.challenge"),
        verify_token: str = Query("", alias="hub.verify_token"),
    ) -> dict[str, str]:
        expected = context.config.strava.verify_token
        if expected and verify_token != expected:
            logger.warning("Rejected webhook subscription validation with wrong verify token")
            raise HTTPException(status_code=403, detail="verify token mismatch")
        logger.info("Verifying webhook subscription")
        return {"hub.challenge": challenge}

    def _handle_notification(payload: Any) -> dict[str, Any]:
        try:
            result: FlowResult = context.router.route(payload)
        except InvalidNotificationError as exc:
            _record(payload, "invalid", str(exc))
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (SyncError, UserStoreError) as exc:
            _record(payload, "failed", f"{type(exc).__name__}: {exc}")
            raise HTTPException(status_code=500, detail=f"Internal Server Error: {exc}") from exc
        _record(payload, result.outcome.value, result.message)
        return result.to_dict()

    @app.post("/webhook")
    async def receive_webhook(request: Request) -> dict[str, Any]:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="body must be JSON") from exc
        logger.info("Received webhook payload: %s", payload)
        # Flows block on provider HTTP calls and sqlite; keep them off the event loop.
        return await run_in_threadpool(_handle_notification, payload)

    @app.get("/webhook/deliveries")
    def webhook_deliveries(limit: int = 50, x_admin_token: str | None = Header(default=None)) -> dict[str, Any]:
        _require_admin(x_admin_token)
        return {"deliveries": context.user_store.recent_deliveries(limit=limit)}

    @app.post("/auth/google")
    def login_with_google(request: GoogleLoginRequest) -> dict[str, Any]:
        try:
            tokens, id_token = context.google.exchange_code(request.code, request.redirect_uri)
            if not id_token:
                logger.error("No ID token in Google token exchange")
                raise HTTPException(status_code=401, detail="Invalid Google Login")
            claims = context.google.verify_id_token(id_token)
        except AuthenticationError as exc:
            raise HTTPException(status_code=401, detail="Invalid Google Login") from exc

        google_user_id = str(claims["sub"])
        email = str(claims.get("email", "") or "")
        user = context.user_store.get_by_google_id(google_user_id) or UserRecord(
            google_user_id=google_user_id, email=email
        )
        updates: dict[str, str] = {"google_access_token": tokens.access_token}
        if email:
            updates["email"] = email
        if tokens.refresh_token:
            updates["google_refresh_token"] = tokens.refresh_token
        user = context.user_store.save(user.with_updates(**updates))
        logger.info("User %s authenticated with Google", google_user_id)
        return {"user": user.public_dict()}

    @app.post("/auth/strava")
    def connect_strava(
        request: StravaConnectRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        google_user_id = _authenticated_user_id(authorization)
        user = context.user_store.get_by_google_id(google_user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        try:
            tokens, athlete_id = context.strava.exchange_code(request.code)
        except AuthenticationError as exc:
            raise HTTPException(status_code=401, detail=str(exc)) from exc
        try:
            context.user_store.save(
                user.with_updates(
                    strava_access_token=tokens.access_token,
                    strava_refresh_token=tokens.refresh_token,
                    strava_athlete_id=athlete_id,
                )
            )
        except AthleteAlreadyLinkedError as exc:
            logger.warning("Athlete %s is already linked to another account", athlete_id)
            raise HTTPException(status_code=409, detail="Strava account is linked to another user") from exc
        logger.info("User %s connected Strava athlete %s", google_user_id, athlete_id)
        return {"success": True}

    @app.get("/user/status")
    def user_status(authorization: str | None = Header(default=None)) -> dict[str, Any]:
        google_user_id = _authenticated_user_id(authorization)
        user = context.user_store.get_by_google_id(google_user_id)
        default_calendar_id = context.config.google.default_calendar_id
        return {
            "connected": bool(user and user.has_strava),
            "google_user_id": google_user_id,
            "selected_calendar_id": user.target_calendar_id(default_calendar_id) if user else default_calendar_id,
        }

    @app.get("/user/calendars")
    def user_calendars(authorization: str | None = Header(default=None)) -> list[dict[str, Any]]:
        google_user_id = _authenticated_user_id(authorization)
        user = context.user_store.get_by_google_id(google_user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        try:
            tokens = context.google.refresh_credentials(user.google_refresh_token)
        except CredentialRefreshError as exc:
            logger.error("Failed to refresh Google token for calendar list: %s", exc)
            raise HTTPException(status_code=401, detail="Failed to refresh token") from exc
        try:
            return context.google.list_calendars(tokens.access_token)
        except CalendarQueryError as exc:
            logger.error("Failed to list calendars for %s: %s", google_user_id, exc)
            raise HTTPException(status_code=500, detail="Failed to fetch calendars") from exc

    @app.patch("/user")
    def update_user(
        request: UserPreferencesRequest,
        authorization: str | None = Header(default=None),
    ) -> dict[str, Any]:
        google_user_id = _authenticated_user_id(authorization)
        user = context.user_store.get_by_google_id(google_user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        if request.selected_calendar_id:
            user = context.user_store.save(
                user.with_updates(selected_calendar_id=request.selected_calendar_id.strip())
            )
        return {"success": True, "user": user.public_dict()}

    return app
