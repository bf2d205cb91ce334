"""Base interface for reachability probes."""

from abc import ABC, abstractmethod


class ProbeError(Exception):
    """The probe could not reach a verdict (resolution failure, socket error, overrun)."""


class BaseProbe(ABC):
    """Abstract base for active reachability checks."""

    @abstractmethod
    async def round_trip(self, address: str) -> float | None:
        """Return the round-trip time in ms, or None if the host did not answer.

        Raises ProbeError when no verdict could be reached.
        """

    async def is_reachable(self, address: str) -> bool:
        return await self.round_trip(address) is not None
