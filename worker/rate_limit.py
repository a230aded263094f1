"""Fixed-delay throttle for calls to the transcode service."""

import asyncio
import logging

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Sleeps a fixed interval before each outbound MediaConvert call.

    MediaConvert throttles on requests per second rather than on open jobs,
    so every CreateJob and GetJob goes through ``wait()`` first. A longer
    ``backoff()`` is used after the service has actually returned a
    throttling error.
    """

    def __init__(self, delay: float = 0.5, backoff_delay: float = 5.0):
        self.delay = delay
        self.backoff_delay = backoff_delay
        self.calls = 0

    async def wait(self) -> None:
        self.calls += 1
        if self.delay > 0:
            await asyncio.sleep(self.delay)

    async def backoff(self) -> None:
        logger.warning(f"Transcode service rate limit hit, backing off {self.backoff_delay:.1f}s")
        if self.backoff_delay > 0:
            await asyncio.sleep(self.backoff_delay)
