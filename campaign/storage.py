"""
Short-lived signed URLs for uploaded purchase documents.

The classifier never receives a permanent link to an invoice image: it gets
a URL that expires after a couple of minutes. The URL carries an HS256 JWT
in its `token` query parameter, binding the object path to an expiry.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import quote, urlencode

import jwt

DEFAULT_EXPIRY_SECONDS = 120
JWT_ALG = "HS256"


class SignedUrlSigner:
    """Creates and verifies expiring document URLs."""

    def __init__(self, base_url: str, secret: str):
        self.base_url = base_url.rstrip("/")
        self.secret = secret

    def create_token(
        self,
        path: str,
        expires_in: int = DEFAULT_EXPIRY_SECONDS,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "path": path.lstrip("/"),
            "iat": int(now.timestamp()),
            "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALG)

    def create_signed_url(
        self,
        path: str,
        expires_in: int = DEFAULT_EXPIRY_SECONDS,
        now: Optional[datetime] = None,
    ) -> str:
        """Signed URL for a storage path, valid for `expires_in` seconds."""
        if not path:
            raise ValueError("path is required")
        path = path.lstrip("/")
        query = urlencode({"token": self.create_token(path, expires_in, now)})
        return f"{self.base_url}/{quote(path)}?{query}"

    def verify(self, path: str, token: str) -> bool:
        """True if the token was signed by us for this path and has not expired."""
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALG])
        except jwt.InvalidTokenError:
            return False
        return payload.get("path") == path.lstrip("/")
