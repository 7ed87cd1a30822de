"""
Player identity via signed bearer tokens.

A token is "{player_id}.{signature}" where the signature is an HMAC-SHA256
of the player ID keyed by SECRET_KEY. The server only ever acts on the
player ID recovered from a valid token; player IDs sent in message bodies
are never trusted.
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from typing import Optional

from config import config

logger = logging.getLogger(__name__)


class IdentityService:
    """Issues and verifies guest session tokens."""

    def __init__(self, secret_key: Optional[str] = None):
        secret_key = secret_key or config.SECRET_KEY
        if not secret_key:
            secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set; tokens will not survive a restart")
        self._key = secret_key.encode()

    def _sign(self, player_id: str) -> str:
        return hmac.new(self._key, player_id.encode(), hashlib.sha256).hexdigest()

    def issue_token(self, player_id: Optional[str] = None) -> tuple[str, str]:
        """
        Issue a token for a player, creating a new player ID if none is given.

        Returns:
            Tuple of (player_id, token).
        """
        player_id = player_id or str(uuid.uuid4())
        return player_id, f"{player_id}.{self._sign(player_id)}"

    def verify(self, token: Optional[str]) -> Optional[str]:
        """
        Verify a token.

        Returns:
            The player ID, or None if the token is missing or forged.
        """
        if not token or "." not in token:
            return None
        player_id, _, signature = token.rpartition(".")
        if not player_id:
            return None
        if not hmac.compare_digest(signature, self._sign(player_id)):
            return None
        return player_id


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an "Authorization: Bearer ..." header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None
