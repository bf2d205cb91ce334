"""Authoritative device state and the single mutation path for it.

Both the health prober and the agent report reconciler write through
``DeviceStore.apply``. Writes are serialized by one lock, the device update and
its audit entry share a transaction, and the change event is published before
the lock is released so subscribers see events in apply order.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from netwatch.notifier.broadcaster import ChangeNotifier, DeviceChangeEvent
from netwatch.registry.audit import append_log, delete_logs_for_device
from netwatch.registry.models import Device, DeviceCategory, DeviceStatus, ObservationSource

logger = logging.getLogger(__name__)

_DEMO_DEVICES = [
    ("Core Switch 01", "192.168.1.1", DeviceCategory.switch, "Data Center A"),
    ("Edge Router", "10.0.0.1", DeviceCategory.router, "Main Office"),
    ("Access Point North", "192.168.1.50", DeviceCategory.access_point, "Floor 2"),
    ("Backup Server", "192.168.1.100", DeviceCategory.server, "Basement"),
]


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite strips tzinfo)."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def resolve_downtime(
    current: datetime | None,
    status: DeviceStatus,
    observed_at: datetime,
) -> datetime | None:
    """Downtime start after observing ``status``.

    An ongoing outage keeps its first start; any non-offline status ends it.
    """
    if status == DeviceStatus.offline:
        return current if current is not None else observed_at
    return None


@dataclass
class Outcome:
    """Result of applying one observation to one device."""

    device: Device
    previous_status: DeviceStatus
    status_changed: bool
    latency_changed: bool  # delta above the significance threshold
    logged: bool
    published: bool
    superseded: bool = False  # prober verdict older than the device's last observation


class DeviceStore:
    """Single-writer facade over the device table."""

    def __init__(
        self,
        engine: Engine,
        notifier: ChangeNotifier | None = None,
        latency_threshold: int = 50,
    ) -> None:
        self._engine = engine
        self._notifier = notifier
        self.latency_threshold = latency_threshold
        self._write_lock = threading.Lock()

    def get_all(self) -> list[Device]:
        with Session(self._engine) as session:
            return list(session.exec(select(Device).order_by(Device.id)).all())  # type: ignore[arg-type]

    def get(self, device_id: int) -> Device | None:
        with Session(self._engine) as session:
            return session.get(Device, device_id)

    def get_by_address(self, address: str) -> list[Device]:
        """Every device registered at ``address``; addresses are not unique."""
        with Session(self._engine) as session:
            stmt = select(Device).where(Device.address == address).order_by(Device.id)  # type: ignore[arg-type]
            return list(session.exec(stmt).all())

    def apply(
        self,
        device_id: int,
        status: DeviceStatus | str,
        latency: int,
        observed_at: datetime,
        source: ObservationSource,
        not_seen_since: datetime | None = None,
    ) -> Outcome | None:
        """Apply one observation. Returns None if the device no longer exists.

        Agent observations always refresh status, latency and last_seen, and are
        logged when the status changes or latency moves by more than the
        threshold. Prober observations only mutate the device on a status
        change; an unchanged verdict leaves last_seen alone so the freshness
        window keeps tracking agent activity.

        ``not_seen_since`` is the prober cycle start. A prober verdict is dropped
        when the device was observed after it. Prober changes keep the last
        measured latency; their log entry records 0.
        """
        status = DeviceStatus(status)
        latency = max(0, int(latency))

        with self._write_lock:
            with Session(self._engine) as session:
                device = session.get(Device, device_id)
                if device is None:
                    logger.debug("Observation for missing device %s ignored", device_id)
                    return None

                previous_status = device.status
                status_changed = previous_status != status
                latency_changed = abs(device.latency - latency) > self.latency_threshold

                last_seen = as_utc(device.last_seen)
                superseded = (
                    source == ObservationSource.prober
                    and not_seen_since is not None
                    and last_seen is not None
                    and last_seen > not_seen_since
                )
                if superseded:
                    logger.debug(
                        "Probe verdict for %s dropped: observed at %s after cycle start",
                        device.address,
                        last_seen,
                    )
                if source == ObservationSource.prober and (superseded or not status_changed):
                    return Outcome(
                        device=device,
                        previous_status=previous_status,
                        status_changed=False,
                        latency_changed=False,
                        logged=False,
                        published=False,
                        superseded=superseded,
                    )

                device.status = status
                if source == ObservationSource.agent:
                    device.latency = latency
                device.last_seen = observed_at
                device.downtime_start = resolve_downtime(
                    device.downtime_start, status, observed_at
                )

                logged = status_changed or (
                    source == ObservationSource.agent and latency_changed
                )
                if logged:
                    append_log(session, device_id, status, latency, observed_at, commit=False)

                session.add(device)
                session.commit()
                session.refresh(device)

            if status_changed:
                logger.info(
                    "[%s] %s (%s): %s -> %s (%dms)",
                    source.upper(),
                    device.address,
                    device.name,
                    previous_status,
                    status,
                    latency,
                )

            published = False
            if self._notifier is not None:
                self._notifier.publish(
                    DeviceChangeEvent(
                        device_id=device_id,
                        status=status,
                        latency=device.latency,
                        downtime_start=as_utc(device.downtime_start),
                        observed_at=observed_at,
                    )
                )
                published = True

        return Outcome(
            device=device,
            previous_status=previous_status,
            status_changed=status_changed,
            latency_changed=latency_changed,
            logged=logged,
            published=published,
        )


def create_device(
    session: Session,
    name: str,
    address: str,
    category: DeviceCategory,
    location: str | None = None,
) -> Device:
    """Register a device. New devices start ``unknown`` with no timestamps."""
    device = Device(name=name, address=address, category=category, location=location)
    session.add(device)
    session.commit()
    session.refresh(device)
    return device


def delete_device(session: Session, device_id: int) -> bool:
    """Delete a device and its audit log. Return True if deleted, False if not found."""
    device = session.get(Device, device_id)
    if device is None:
        return False

    logger.info("Deleting device %s", device_id)
    delete_logs_for_device(session, device_id)
    session.delete(device)
    session.commit()
    return True


def seed_demo_devices(session: Session) -> int:
    """Populate an empty registry with demo devices. Returns how many were added."""
    if session.exec(select(Device)).first() is not None:
        return 0
    for name, address, category, location in _DEMO_DEVICES:
        session.add(Device(name=name, address=address, category=category, location=location))
    session.commit()
    return len(_DEMO_DEVICES)
