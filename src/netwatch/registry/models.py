"""Device, audit log, and status enums."""

import enum
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel


class DeviceCategory(enum.StrEnum):
    switch = "switch"
    router = "router"
    server = "server"
    access_point = "access-point"


class DeviceStatus(enum.StrEnum):
    online = "online"
    offline = "offline"
    unknown = "unknown"


class ObservationSource(enum.StrEnum):
    prober = "prober"
    agent = "agent"


class Device(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    name: str
    address: str = Field(index=True)  # IP or hostname
    category: DeviceCategory
    status: DeviceStatus = DeviceStatus.unknown
    latency: int = 0  # ms, 0 means "not measured"
    last_seen: datetime | None = None
    downtime_start: datetime | None = None  # set only while offline
    location: str | None = None


class LogEntry(SQLModel, table=True):
    """Append-only history of a device's status transitions."""

    id: int | None = Field(default=None, primary_key=True)
    device_id: int = Field(index=True, foreign_key="device.id")
    status: DeviceStatus
    latency: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
