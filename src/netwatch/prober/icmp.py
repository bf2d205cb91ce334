"""ICMP echo probe using ping3.

ping3 is blocking, so each probe runs in a worker thread. A wall-clock guard
slightly above the ICMP timeout bounds the worst case even if the thread
stalls on name resolution.
"""

import asyncio
import logging

import ping3

from netwatch.prober.base import BaseProbe, ProbeError

logger = logging.getLogger(__name__)

# Extra time allowed on top of the ICMP timeout for thread scheduling and DNS
_GUARD_SECONDS = 1.0


class IcmpProbe(BaseProbe):
    """Sends a single ICMP echo request per check."""

    def __init__(self, timeout: float = 2.0) -> None:
        self.timeout = timeout

    async def round_trip(self, address: str) -> float | None:
        try:
            delay = await asyncio.wait_for(
                asyncio.to_thread(ping3.ping, address, timeout=self.timeout, unit="ms"),
                timeout=self.timeout + _GUARD_SECONDS,
            )
        except TimeoutError as e:
            raise ProbeError(f"probe of {address} overran {self.timeout + _GUARD_SECONDS}s") from e
        except OSError as e:
            # Raw socket permission errors and similar
            raise ProbeError(f"probe of {address} failed: {e}") from e

        # ping3: None on timeout, False on error (e.g. unknown host)
        if delay is False:
            raise ProbeError(f"probe of {address} failed: host unknown or unreachable socket")
        if delay is None:
            logger.debug("No echo reply from %s within %.1fs", address, self.timeout)
            return None
        return float(delay)
