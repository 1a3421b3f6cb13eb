"""
At-rest encryption for OAuth tokens stored in the state database.
"""

import base64
import hashlib
import logging

from cryptography.fernet import Fernet
from cryptography.fernet import InvalidToken

logger = logging.getLogger(__name__)

# Used when no encryption secret is configured; set one in production.
DEV_TOKEN_SECRET = "academic-calendar-sync-dev-secret"


class TokenCipher:
    """Fernet cipher keyed by the SHA-256 digest of a configured secret."""

    def __init__(self, secret: str | None = None):
        if not secret:
            logger.debug("No token encryption secret configured; using development secret")
            secret = DEV_TOKEN_SECRET
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def encrypt(self, token: str | None) -> str | None:
        if token is None:
            return None
        return self._fernet.encrypt(token.encode("utf-8")).decode("ascii")

    def decrypt(self, stored: str | None) -> str | None:
        """Return the plaintext token, or None when it cannot be decrypted.

        A token written under a different secret is treated as missing, so the
        user is asked to reconnect instead of every read failing.
        """
        if stored is None:
            return None
        try:
            return self._fernet.decrypt(stored.encode("ascii")).decode("utf-8")
        except (InvalidToken, ValueError):
            logger.warning("Stored token could not be decrypted with the configured secret")
            return None
