"""
IP Block Registry - active/inactive block records keyed by IP address.
"""

import logging
from datetime import datetime
from typing import List, Optional

from safeguard.lib.database import ModerationRepository, Query
from safeguard.lib.errors import PersistenceError
from safeguard.lib.locks import KeyedLock
from safeguard.lib.metrics import MetricsExporter
from safeguard.models.security import BlockedIP

logger = logging.getLogger(__name__)


class IPBlockRegistry:

    def __init__(self, repository: ModerationRepository):
        self.repository = repository
        self._locks = KeyedLock("ip")

    def is_blocked(self, ip_address: str) -> bool:
        """Fails open: an unreadable block record counts as not blocked."""
        try:
            record = self.repository.get(BlockedIP, ip_address)
        except PersistenceError as e:
            logger.warning(f"Block state unknown for {ip_address}, treating as unblocked: {e}")
            MetricsExporter.record_lookup_failure("ip_block")
            return False
        return record is not None and record.active

    def block(self, ip_address: str, reason: str, duration: Optional[int] = None) -> BlockedIP:
        """Create or re-activate the block; the latest reason and duration win."""
        with self._locks.hold(ip_address):
            record = self.repository.upsert(BlockedIP(
                ip_address=ip_address,
                reason=reason,
                duration=duration,
                active=True,
            ))
        logger.warning(f"Blocked IP {ip_address}: {reason}")
        MetricsExporter.record_ip_block("blocked")
        return record

    def unblock(self, ip_address: str) -> Optional[BlockedIP]:
        """Deactivate the block. Unknown or already inactive IPs are a no-op."""
        with self._locks.hold(ip_address):
            record = self.repository.get(BlockedIP, ip_address)
            if record is None or not record.active:
                return record
            record = self.repository.update(record.touched(active=False))
        logger.info(f"Unblocked IP {ip_address}")
        MetricsExporter.record_ip_block("unblocked")
        return record

    def list_blocked(self) -> List[BlockedIP]:
        blocked = self.repository.find(BlockedIP, Query(equals={'active': True}))
        MetricsExporter.update_active_blocks(len(blocked))
        return blocked

    def sweep_expired(self, now: Optional[datetime] = None) -> List[str]:
        """Deactivate blocks whose advisory duration has elapsed."""
        now = now or datetime.utcnow()
        expired = []
        for record in self.list_blocked():
            expires_at = record.expires_at()
            if expires_at is not None and expires_at <= now:
                self.unblock(record.ip_address)
                expired.append(record.ip_address)
        if expired:
            logger.info(f"Expired {len(expired)} IP blocks")
        return expired
