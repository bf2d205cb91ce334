"""Append-only audit log of device status transitions."""

from datetime import datetime

from sqlmodel import Session, select

from netwatch.registry.models import Device, DeviceStatus, LogEntry


def append_log(
    session: Session,
    device_id: int,
    status: DeviceStatus,
    latency: int,
    timestamp: datetime,
    commit: bool = True,
) -> LogEntry:
    """Record a status/latency reading for a device.

    With ``commit=False`` the entry joins the caller's transaction, so a device
    update and its log entry land together or not at all.
    """
    entry = LogEntry(device_id=device_id, status=status, latency=latency, timestamp=timestamp)
    session.add(entry)
    if commit:
        session.commit()
        session.refresh(entry)
    return entry


def recent_logs(session: Session, device_id: int, limit: int = 50) -> list[LogEntry]:
    """Most recent entries for one device, newest first."""
    stmt = (
        select(LogEntry)
        .where(LogEntry.device_id == device_id)
        .order_by(LogEntry.timestamp.desc(), LogEntry.id.desc())  # type: ignore[attr-defined,union-attr]
        .limit(limit)
    )
    return list(session.exec(stmt).all())


def recent_downtime(session: Session, limit: int = 100) -> list[tuple[LogEntry, str, str]]:
    """Fleet-wide offline events, newest first, with the owning device's name and address."""
    stmt = (
        select(LogEntry, Device.name, Device.address)
        .join(Device, LogEntry.device_id == Device.id)  # type: ignore[arg-type]
        .where(LogEntry.status == DeviceStatus.offline)
        .order_by(LogEntry.timestamp.desc(), LogEntry.id.desc())  # type: ignore[attr-defined,union-attr]
        .limit(limit)
    )
    return [(entry, name, address) for entry, name, address in session.exec(stmt).all()]


def delete_logs_for_device(session: Session, device_id: int) -> int:
    """Remove every entry owned by a device. Caller commits."""
    entries = session.exec(select(LogEntry).where(LogEntry.device_id == device_id)).all()
    for entry in entries:
        session.delete(entry)
    return len(entries)
