"""Credential store and token lifecycle.

Modules:
    token_store: per-environment token files
    device_code: device code issuance, polling and refresh grants
    manager: live token holder used by the remote client
    browser: interactive MSAL sign-in through the system browser
"""

from .browser import BrowserSignIn
from .device_code import begin_device_auth, poll_for_token, refresh_with_token
from .manager import TokenManager, refresh_silently
from .token_store import TokenStore

__all__ = [
    "BrowserSignIn",
    "TokenStore",
    "TokenManager",
    "begin_device_auth",
    "poll_for_token",
    "refresh_silently",
    "refresh_with_token",
]
