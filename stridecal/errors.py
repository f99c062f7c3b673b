from __future__ import annotations


class SyncError(Exception):
    """Base class for failures that abort a synchronization flow."""


class CredentialRefreshError(SyncError):
    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ActivityFetchError(SyncError):
    pass


class CalendarQueryError(SyncError):
    pass


class CalendarMutationError(SyncError):
    pass


class UserStoreError(Exception):
    """Raised by the user store when a read or write fails."""


class InvalidNotificationError(ValueError):
    pass


class AuthenticationError(Exception):
    """OAuth code exchange or ID-token verification failed."""


class AthleteAlreadyLinkedError(UserStoreError):
    """The Strava athlete is already linked to a different account."""
