"""
Sliding-window rate limiter keyed by (identifier, action).
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from safeguard.lib.config import SecurityConfig
from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import PersistenceError
from safeguard.lib.locks import KeyedLock
from safeguard.lib.metrics import MetricsExporter
from safeguard.models.enums import RateLimitOutcome
from safeguard.models.security import RateLimitDecision, RateLimitRecord

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Counts requests over the trailing window `[now - window, now]`.

    A request at or over the limit is denied without being recorded, so
    denied retries do not extend a client's penalty. Storage failures fail
    open with an UNKNOWN outcome.
    """

    def __init__(self, repository: ModerationRepository, config: Optional[SecurityConfig] = None):
        self.repository = repository
        self.config = config or SecurityConfig()
        self._locks = KeyedLock("rate_limit")

    def check(
        self,
        identifier: str,
        action: str,
        limit: Optional[int] = None,
        window_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> RateLimitDecision:
        limit = limit if limit is not None else self.config.get_int('rate_limit_default_limit')
        window_seconds = (
            window_seconds if window_seconds is not None
            else self.config.get_int('rate_limit_default_window_seconds')
        )
        now = now or datetime.utcnow()

        with self._locks.hold((identifier, action)):
            try:
                current = self.current_count(identifier, action, window_seconds, now)
                if current >= limit:
                    decision = RateLimitDecision(
                        allowed=False,
                        outcome=RateLimitOutcome.DENIED,
                        current_count=current,
                        limit=limit,
                        window_seconds=window_seconds,
                    )
                    logger.info(f"Rate limit exceeded for {identifier}/{action}: {current}/{limit}")
                else:
                    self.repository.insert(RateLimitRecord(
                        identifier=identifier, action=action, count=1,
                        created_at=now, updated_at=now,
                    ))
                    decision = RateLimitDecision(
                        allowed=True,
                        outcome=RateLimitOutcome.ALLOWED,
                        current_count=current + 1,
                        limit=limit,
                        window_seconds=window_seconds,
                    )
            except PersistenceError as e:
                logger.warning(f"Rate limit state unknown for {identifier}/{action}, allowing: {e}")
                decision = RateLimitDecision(
                    allowed=True,
                    outcome=RateLimitOutcome.UNKNOWN,
                    limit=limit,
                    window_seconds=window_seconds,
                )

        MetricsExporter.record_rate_limit(action, decision.outcome.value)
        return decision

    def current_count(self, identifier: str, action: str, window_seconds: int, now: datetime) -> int:
        records = self.repository.find(RateLimitRecord, Query(
            equals={'identifier': identifier, 'action': action},
            start_date=now - timedelta(seconds=window_seconds),
            end_date=now,
        ))
        return sum(r.count for r in records)

    def purge_expired(self, older_than_seconds: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete records that can no longer fall inside any window."""
        older_than_seconds = (
            older_than_seconds if older_than_seconds is not None
            else self.config.get_int('rate_limit_default_window_seconds')
        )
        cutoff = (now or datetime.utcnow()) - timedelta(seconds=older_than_seconds)
        removed = self.repository.delete_where(
            RateLimitRecord, Query(end_date=cutoff - timedelta(microseconds=1))
        )
        logger.info(f"Purged {removed} expired rate limit records")
        return removed
