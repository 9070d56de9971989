"""
Fixed-window rate limiter backed by the rate_limits table, so every worker
process sees the same counters.
"""
import logging
from datetime import timedelta

from domain_errors import RateLimitExceeded
from models import RateLimit
from timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, session, requests, duration: timedelta):
        self.session = session
        self.requests = requests
        self.duration = duration

    def consume(self, key, now=None):
        """
        Spend one point for ``key``; raise RateLimitExceeded when the window is used up.

        Commits the counter on success so the attempt is counted even if the
        caller's own work fails later.
        """
        now = now or get_utc_now()
        try:
            row = self.session.query(RateLimit).filter_by(key=key).with_for_update().first()
            if row is None:
                row = RateLimit(key=key, points=0, expires_at=now + self.duration)
                self.session.add(row)
            elif row.expires_at <= now:
                row.points = 0
                row.expires_at = now + self.duration

            if row.points >= self.requests:
                retry_after = int((row.expires_at - now).total_seconds())
                self.session.rollback()
                logger.warning(f"Rate limit hit for {key}, retry in {retry_after}s")
                raise RateLimitExceeded(key, retry_after)

            row.points += 1
            self.session.commit()
        except RateLimitExceeded:
            raise
        except Exception as e:
            self.session.rollback()
            logger.error(f"Error updating rate limit {key}: {str(e)}")
            raise

    def reset(self, key):
        self.session.query(RateLimit).filter_by(key=key).delete()
        self.session.commit()
