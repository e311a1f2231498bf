"""Exception hierarchy for xrmpub."""

from __future__ import annotations

from typing import Optional


class PublisherError(Exception):
    """Base exception for all xrmpub errors."""


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------
class AuthError(PublisherError):
    """Error while acquiring, refreshing or using an access token."""


class ChallengeFailedError(AuthError):
    """The sign-in could not start (device code request or browser redirect listener failed)."""


class AuthDeniedError(AuthError):
    """The token endpoint answered with a terminal error code."""

    def __init__(self, code: str, description: str = ""):
        self.code = code
        self.description = description
        msg = f"token error: {code}"
        if description:
            msg += f" - {description}"
        super().__init__(msg)


class AuthTimeoutError(AuthError):
    """The user did not complete sign-in before the poll deadline."""


class AuthCancelledError(AuthError):
    """The device code poll was abandoned by the caller."""


class RefreshFailedError(AuthError):
    """Silent refresh failed; interactive sign-in is required."""


class UnauthorizedError(AuthError):
    """The remote API rejected the token and a single refresh did not help."""


class NotConnectedError(AuthError):
    """A remote operation was requested before signing in to an environment."""


# ---------------------------------------------------------------------------
# Remote API
# ---------------------------------------------------------------------------
class RemoteAPIError(PublisherError):
    """Non-2xx, non-401 response (or transport failure, status_code=0)."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"API error {status_code}: {body}")


class UnsupportedFileTypeError(PublisherError):
    """The file extension has no matching web resource type."""


# ---------------------------------------------------------------------------
# Watching
# ---------------------------------------------------------------------------
class WatchError(PublisherError):
    """An OS-level watch could not be installed or reported an error."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"cannot watch {path}: {reason}")


# ---------------------------------------------------------------------------
# Configuration document
# ---------------------------------------------------------------------------
class ConfigError(PublisherError):
    """Validation error raised synchronously by the binding store."""


class DuplicateNameError(ConfigError):
    pass


class NotFoundError(ConfigError):
    pass


class EnvironmentNotFoundError(NotFoundError):
    pass


class BindingNotFoundError(NotFoundError):
    pass


class InvalidUrlError(ConfigError):
    pass


class EmptyNameError(ConfigError):
    pass


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------
class PublishError(PublisherError):
    """A publish attempt failed locally; carries the binding's identity."""

    def __init__(self, message: str, *, local_path: str = "", resource_id: str = "",
                 cause: Optional[BaseException] = None):
        self.local_path = local_path
        self.resource_id = resource_id
        self.cause = cause
        super().__init__(message)


class NotBoundError(PublishError):
    pass


class ReadFailedError(PublishError):
    pass


class PersistFailedError(PublishError):
    """The remote publish succeeded but the version bump was not saved."""
