"""Merge batched agent reports into the device store."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from netwatch.registry.models import DeviceStatus, ObservationSource
from netwatch.registry.store import DeviceStore

logger = logging.getLogger(__name__)


class InvalidReportBatch(ValueError):
    """The payload is not a list of reports; the whole batch is rejected."""


class ReconciliationError(RuntimeError):
    """One or more reports failed unexpectedly while being applied."""

    def __init__(self, message: str, result: "IngestResult") -> None:
        super().__init__(message)
        self.result = result


class AgentReport(BaseModel):
    """A single observation posted by a remote agent."""

    address: str = Field(validation_alias=AliasChoices("address", "ip"), min_length=1)
    status: DeviceStatus
    latency: int = 0

    @field_validator("address", mode="before")
    @classmethod
    def strip_address(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("latency", mode="before")
    @classmethod
    def coerce_latency(cls, v: object) -> int:
        """Missing, non-numeric or negative latency counts as "not measured"."""
        if isinstance(v, bool):
            return 0
        try:
            value = round(float(v))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0
        return max(0, value)


@dataclass
class IngestResult:
    received: int = 0
    applied: int = 0  # device updates, one per matching device
    skipped: int = 0  # malformed elements
    unmatched: int = 0  # well-formed, but no device at that address
    errors: list[str] = field(default_factory=list)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReportReconciler:
    """Validates agent report batches and applies each element to every matching device."""

    def __init__(
        self,
        store: DeviceStore,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self._clock = clock

    def parse_report(self, raw: Any) -> AgentReport | None:
        """Validate one element. Returns None for elements that should be skipped."""
        if not isinstance(raw, dict):
            return None
        try:
            return AgentReport.model_validate(raw)
        except ValidationError as e:
            logger.debug("Skipping malformed report %r: %s", raw, e.errors(include_url=False))
            return None

    def ingest(self, batch: Any) -> IngestResult:
        """Apply a batch of raw reports.

        Raises InvalidReportBatch if ``batch`` is not a list. Malformed elements
        are skipped. An unexpected failure on one element does not stop the
        rest; once the batch is done, such failures raise ReconciliationError.
        """
        if not isinstance(batch, list):
            raise InvalidReportBatch("Invalid payload: expected a list of reports")

        result = IngestResult(received=len(batch))
        for raw in batch:
            report = self.parse_report(raw)
            if report is None:
                result.skipped += 1
                continue

            devices = self.store.get_by_address(report.address)
            if not devices:
                logger.debug("No device registered at %s", report.address)
                result.unmatched += 1
                continue

            # Receipt time, not agent time: agent clocks may drift.
            observed_at = self._clock()
            for device in devices:
                try:
                    outcome = self.store.apply(
                        device.id,  # type: ignore[arg-type]
                        report.status,
                        report.latency,
                        observed_at,
                        ObservationSource.agent,
                    )
                except Exception as e:
                    logger.exception("Error applying agent report for %s", report.address)
                    result.errors.append(f"{report.address} (device {device.id}): {e}")
                    continue
                if outcome is not None:
                    result.applied += 1

        if result.errors:
            raise ReconciliationError(
                f"{len(result.errors)} report(s) failed: " + "; ".join(result.errors),
                result,
            )
        return result
