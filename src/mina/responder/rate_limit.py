"""Per-user and per-channel reply cooldowns."""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Check-and-record cooldowns.

    Every reply consumes the (channel, user) cooldown. Ambient replies also
    consume a shared cooldown for the channel, so a busy channel cannot make
    Mina answer every message in quick succession.
    """

    def __init__(
        self,
        user_cooldown: float = 3.0,
        channel_cooldown: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 10_000,
    ) -> None:
        self.user_cooldown = user_cooldown
        self.channel_cooldown = channel_cooldown
        self._clock = clock
        self._max_entries = max_entries
        self._last_served: dict[str, float] = {}

    def is_limited(self, channel_id: str, user_id: str, ambient: bool = False) -> bool:
        """Whether to drop this message. Records the attempt when allowed."""
        now = self._clock()
        user_key = f"{channel_id}:{user_id}"
        channel_key = f"channel:{channel_id}"

        last = self._last_served.get(user_key)
        if last is not None and now - last < self.user_cooldown:
            return True

        if ambient:
            last = self._last_served.get(channel_key)
            if last is not None and now - last < self.channel_cooldown:
                return True
            self._last_served[channel_key] = now

        self._last_served[user_key] = now
        if len(self._last_served) > self._max_entries:
            self.prune()
        return False

    def prune(self) -> int:
        """Forget entries whose cooldown has passed."""
        now = self._clock()
        horizon = max(self.user_cooldown, self.channel_cooldown)
        stale = [k for k, t in self._last_served.items() if now - t >= horizon]
        for key in stale:
            del self._last_served[key]
        if stale:
            logger.debug(f"Pruned {len(stale)} rate limit entries")
        return len(stale)

    def __len__(self) -> int:
        return len(self._last_served)
