"""
Payment status caching for the status endpoint.

Only terminal snapshots are cached: a completed or failed payment never changes
again, while a pending one must always be re-read so polling sees the callback.
"""
import time
from typing import Dict, Optional, Any

from afya.payment.models import TERMINAL_STATUSES


class PaymentStatusCache:
    """In-memory cache of terminal payment snapshots"""

    def __init__(self, ttl: int = 300):
        self._cache: Dict[str, Dict[str, Any]] = {}
        self.ttl = ttl

    def __len__(self):
        return len(self._cache)

    def get_status(self, payment_id: str) -> Optional[Dict[str, Any]]:
        cached = self._cache.get(str(payment_id))
        if cached is None:
            return None
        if time.time() - cached['timestamp'] < self.ttl:
            return cached['data']
        self._cache.pop(str(payment_id), None)
        return None

    def set_status(self, payment_id: str, status_data: Dict[str, Any]) -> bool:
        """Cache a snapshot; pending snapshots are ignored."""
        if status_data.get('status') not in TERMINAL_STATUSES:
            return False
        self._cache[str(payment_id)] = {
            'data': status_data,
            'timestamp': time.time()
        }
        return True

    def invalidate(self, payment_id: str) -> None:
        self._cache.pop(str(payment_id), None)

    def clear(self) -> None:
        self._cache.clear()

    def clear_expired(self) -> int:
        current_time = time.time()
        expired_keys = [
            key for key, data in self._cache.items()
            if current_time - data['timestamp'] >= self.ttl
        ]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)
