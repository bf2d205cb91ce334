"""Remote agent: pings devices from inside their network and reports back.

Run it on a machine that can reach the monitored addresses when the server
itself cannot (e.g. a cloud-hosted dashboard watching a private LAN).
"""

import asyncio
import logging
from typing import Any

import httpx

from netwatch.config import AgentSettings
from netwatch.prober.base import BaseProbe, ProbeError
from netwatch.prober.icmp import IcmpProbe

logger = logging.getLogger(__name__)

REPORT_PATH = "/api/agent/report"


class ReportAgent:
    """Periodically probes a fixed address list and posts the results."""

    def __init__(
        self,
        server_url: str,
        addresses: list[str],
        probe: BaseProbe,
        interval: int = 10,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self.addresses = addresses
        self.probe = probe
        self.interval = interval
        self._running = False

    async def _check(self, address: str) -> dict[str, Any]:
        try:
            rtt = await self.probe.round_trip(address)
        except ProbeError as e:
            logger.debug("Probe error for %s: %s", address, e)
            rtt = None
        if rtt is None:
            return {"address": address, "status": "offline", "latency": 0}
        return {"address": address, "status": "online", "latency": round(rtt)}

    async def collect(self) -> list[dict[str, Any]]:
        reports = await asyncio.gather(*(self._check(addr) for addr in self.addresses))
        for report in reports:
            logger.info("[%s] is %s (%dms)", report["address"], report["status"], report["latency"])
        return list(reports)

    async def send(self, client: httpx.AsyncClient, reports: list[dict[str, Any]]) -> bool:
        """POST one batch. Returns True on success; failures are logged, not raised."""
        try:
            resp = await client.post(REPORT_PATH, json=reports)
        except httpx.HTTPError as e:
            logger.error("Error sending report: %s", e)
            return False

        if not resp.is_success:
            try:
                body = resp.json()
                detail = body.get("details") or body.get("detail") or body.get("error")
            except ValueError:
                detail = resp.text
            logger.error("Server error (HTTP %d): %s", resp.status_code, detail)
            return False

        logger.info("Report sent (%d devices)", len(reports))
        return True

    async def run(self) -> None:
        logger.info(
            "Agent started: %d address(es) every %ds -> %s",
            len(self.addresses),
            self.interval,
            self.server_url,
        )
        self._running = True
        async with httpx.AsyncClient(base_url=self.server_url, timeout=15.0) as client:
            while self._running:
                try:
                    reports = await self.collect()
                    if reports:
                        await self.send(client, reports)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Agent cycle error")

                await asyncio.sleep(self.interval)

    def stop(self) -> None:
        self._running = False


def main() -> None:
    cfg = AgentSettings()
    logging.basicConfig(level=cfg.log_level.upper())

    if not cfg.addresses:
        logger.error("No addresses configured (set NETWATCH_AGENT_ADDRESSES)")
        raise SystemExit(1)

    agent = ReportAgent(
        server_url=cfg.server_url,
        addresses=cfg.addresses,
        probe=IcmpProbe(timeout=cfg.ping_timeout),
        interval=cfg.interval,
    )
    try:
        asyncio.run(agent.run())
    except KeyboardInterrupt:
        logger.info("Agent stopped")


if __name__ == "__main__":
    main()
