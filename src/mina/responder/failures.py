"""Sliding-window failure tracking per tenant."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TenantFailureTracker:
    """Disables a tenant after repeated reply failures.

    A tenant is disabled while at least ``threshold`` failures fall within
    the last ``window`` seconds. It re-enables itself as old failures age
    out, or at once after a successful reply.
    """

    def __init__(
        self,
        threshold: int = 5,
        window: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.window = window
        self._clock = clock
        self._failures: dict[str, list[float]] = {}

    def recent_failures(self, tenant_id: str) -> int:
        now = self._clock()
        failures = self._failures.get(tenant_id)
        if not failures:
            return 0
        recent = [t for t in failures if now - t < self.window]
        if recent:
            self._failures[tenant_id] = recent
        else:
            del self._failures[tenant_id]
        return len(recent)

    def record_failure(self, tenant_id: str) -> int:
        """Record a failure. Returns the failure count within the window."""
        self._failures.setdefault(tenant_id, []).append(self._clock())
        count = self.recent_failures(tenant_id)
        if count == self.threshold:
            logger.error(
                f"Replies auto-disabled for tenant {tenant_id} after {count} failures"
            )
        return count

    def clear(self, tenant_id: str) -> None:
        self._failures.pop(tenant_id, None)

    def is_disabled(self, tenant_id: str) -> bool:
        return self.recent_failures(tenant_id) >= self.threshold
