"""Per-connection inbound frame throttling."""

import time
from collections.abc import Callable

# 20 frames/sec sustained with bursts of 40 covers typing signals sent on
# every keystroke plus normal chatting.
DEFAULT_RATE = 20.0
DEFAULT_BURST = 40


class TokenBucket:
    """Token bucket: refills at `rate` tokens per second up to `burst`.

    Each allowed frame costs one token. When the bucket is empty the frame is
    refused and the caller answers with a rate_limited error instead of
    processing it.
    """

    def __init__(
        self,
        rate: float = DEFAULT_RATE,
        burst: int = DEFAULT_BURST,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if rate <= 0 or burst < 1:
            raise ValueError("rate must be positive and burst at least 1")
        self._rate = rate
        self._burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._updated_at = clock()

    @property
    def available(self) -> float:
        self._refill()
        return self._tokens

    def consume(self) -> bool:
        """Take one token. False means the frame should be refused."""
        self._refill()
        if self._tokens < 1.0:
            return False
        self._tokens -= 1.0
        return True

    def _refill(self) -> None:
        now = self._clock()
        self._tokens = min(float(self._burst), self._tokens + (now - self._updated_at) * self._rate)
        self._updated_at = now
