"""GitHub credential resolution: command line, environment, then OS keyring."""

import logging
from typing import Optional

import httpx
import keyring
import keyring.errors

from eepromsync.config import Settings

log = logging.getLogger(__name__)

KEYRING_SERVICE = "eepromsync"
KEY_USER_PASS = "github_user_pass"


def parse_user_pass(user_pass: str) -> httpx.BasicAuth:
    """Split 'user:password' on the first colon into HTTP Basic auth."""
    user, sep, password = user_pass.partition(":")
    if not sep or not user:
        raise ValueError("credential must have the form user:password")
    return httpx.BasicAuth(user, password)


class CredentialsStore:
    """
    Stores the 'user:token' string in the OS keyring (Windows Credential Manager,
    macOS Keychain, Linux Secret Service). No plain-text storage.
    """

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self._service = service

    def get_stored(self) -> Optional[str]:
        """
        Return the stored credential, or None. A keyring read error (no backend,
        locked collection) is logged and treated as no credential.
        """
        try:
            value = keyring.get_password(self._service, KEY_USER_PASS)
        except Exception as e:
            log.warning("Could not read stored credentials: %s", e)
            return None
        return value or None

    def set_stored(self, user_pass: str) -> None:
        """Store the credential in the keyring. Validates its form first."""
        parse_user_pass(user_pass)
        keyring.set_password(self._service, KEY_USER_PASS, user_pass)

    def clear_stored(self) -> None:
        try:
            keyring.delete_password(self._service, KEY_USER_PASS)
        except keyring.errors.PasswordDeleteError:
            pass


def resolve_user_pass(
    flag_value: Optional[str],
    settings: Settings,
    store: Optional[CredentialsStore] = None,
) -> Optional[str]:
    """First non-empty of: --github_user_pass, GITHUB_USER:GITHUB_AUTH_TOKEN, keyring. None = anonymous."""
    if flag_value:
        log.debug("Using credential from command line")
        return flag_value
    from_env = settings.env_user_pass()
    if from_env:
        log.debug("Using credential from GITHUB_USER/GITHUB_AUTH_TOKEN")
        return from_env
    if store is not None:
        stored = store.get_stored()
        if stored:
            log.debug("Using credential from keyring")
            return stored
    log.debug("No credential; requests are unauthenticated")
    return None


def resolve_auth(
    flag_value: Optional[str],
    settings: Settings,
    store: Optional[CredentialsStore] = None,
) -> Optional[httpx.BasicAuth]:
    """HTTP Basic auth for the resolved credential, or None."""
    user_pass = resolve_user_pass(flag_value, settings, store)
    return parse_user_pass(user_pass) if user_pass else None
