"""
auth/csrf.py -- Stateless, signed CSRF tokens.

Token format:  "{timestamp_ms}.{hex_signature}"
  timestamp_ms   epoch milliseconds at issue time, as a decimal string
  hex_signature  HMAC-SHA256(CSRF_SECRET, timestamp_ms) as lowercase hex

Nothing is stored server-side. A token is valid iff its signature recomputes
and its age is within the TTL, so any instance holding the secret can verify
any token, and tokens die by time alone (there is no revocation).

Two verification strategies:
  verify_double_submit(cookie, header)  header must byte-equal the cookie.
      A cross-site page cannot read the cookie, so it cannot echo it.
  verify_signed(token)                  signature + TTL only. Used when the
      browser withholds the cookie (cross-origin deployments). Proves the token
      was minted here recently but does not bind it to this browser.

Every comparison uses hmac.compare_digest so timing never reveals how many
leading bytes matched.

Layer rule: no imports from api/ or counters/.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Callable

DEFAULT_TTL_SECONDS = 60 * 60


def _now_ms() -> int:
    return int(time.time() * 1000)


class CsrfTokenEngine:
    """Generates and verifies signed CSRF tokens.

    Usage:
        engine = CsrfTokenEngine(settings.csrf_secret)
        token = engine.generate()
        engine.verify_signed(token)                   # True
        engine.verify_double_submit(token, token)     # True
    """

    def __init__(
        self,
        secret: str,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        if len(secret) < 32:
            raise ValueError("CSRF secret must be at least 32 characters.")
        self._key = secret.encode("utf-8")
        self.ttl_ms = ttl_seconds * 1000
        self._clock_ms = clock_ms

    def _sign(self, timestamp: str) -> str:
        return hmac.new(self._key, timestamp.encode("ascii"), hashlib.sha256).hexdigest()

    def generate(self) -> str:
        timestamp = str(self._clock_ms())
        return f"{timestamp}.{self._sign(timestamp)}"

    def verify_signed(self, token: str) -> bool:
        """Return True if the token is well-formed, unexpired, and correctly signed."""
        parts = token.split(".")
        if len(parts) != 2:
            return False
        timestamp, signature = parts
        if not timestamp or not signature or not (timestamp.isascii() and timestamp.isdigit()):
            return False

        age = self._clock_ms() - int(timestamp)
        if age < 0 or age > self.ttl_ms:
            return False

        expected = self._sign(timestamp)
        return hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii"))

    @staticmethod
    def verify_double_submit(cookie_token: str | None, header_token: str | None) -> bool:
        """Return True if both tokens are present and byte-identical.

        Tokens of different length are rejected before any content comparison.
        """
        if not cookie_token or not header_token:
            return False
        cookie = cookie_token.encode("utf-8")
        header = header_token.encode("utf-8")
        if len(cookie) != len(header):
            return False
        return hmac.compare_digest(cookie, header)
