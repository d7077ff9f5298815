"""One-time codes bound to signing-session tokens, kept in Redis.

Keys outlive the code's own expiry by a short grace period so that a late
attempt can be told apart ("expired") from one that never had a code
("not found"). The session row's own ``expires_at`` stays authoritative.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Optional

import redis

from .config import REDIS_URL, OTP_TTL_MINUTES
from .crypto import constant_time_equals, generate_otp
from .errors import OtpExpired, OtpMismatch, OtpNotFound
from .utils import utcnow

logger = logging.getLogger(__name__)

KEY_PREFIX = "fopd:otp:"
GRACE_SECONDS = 300
MAX_ATTEMPTS = 5


class OtpStore:
    def __init__(self, client=None, ttl_minutes: int = OTP_TTL_MINUTES):
        self.client = client if client is not None else redis.Redis.from_url(REDIS_URL, decode_responses=True)
        self.ttl = timedelta(minutes=ttl_minutes)

    def _key(self, session_token: str) -> str:
        return f"{KEY_PREFIX}{session_token}"

    def issue(self, session_token: str, now: Optional[datetime] = None) -> str:
        now = now or utcnow()
        code = generate_otp()
        record = {"otp": code, "expires_at": (now + self.ttl).isoformat()}
        self.client.set(
            self._key(session_token),
            json.dumps(record),
            ex=int(self.ttl.total_seconds()) + GRACE_SECONDS,
        )
        return code

    def verify(self, session_token: str, otp: str, now: Optional[datetime] = None) -> None:
        """Check ``otp`` for ``session_token`` and consume it on success."""
        now = now or utcnow()
        key = self._key(session_token)
        raw = self.client.get(key)
        if raw is None:
            raise OtpNotFound("No OTP found for this session. Please try again.")
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        record = json.loads(raw)
        if datetime.fromisoformat(record["expires_at"]) <= now:
            self.client.delete(key)
            raise OtpExpired("OTP has expired. Please create a new session.")
        if not constant_time_equals(record["otp"], otp):
            record["attempts"] = record.get("attempts", 0) + 1
            if record["attempts"] >= MAX_ATTEMPTS:
                self.client.delete(key)
                logger.warning("OTP for a signing session discarded after %d failed attempts", MAX_ATTEMPTS)
            else:
                self.client.set(key, json.dumps(record), keepttl=True)
            raise OtpMismatch("Invalid OTP. Please check and try again.")
        self.client.delete(key)


_default_store: Optional[OtpStore] = None


def get_otp_store() -> OtpStore:
    global _default_store
    if _default_store is None:
        _default_store = OtpStore()
    return _default_store
