"""Tests for the per-device history and the fleet-wide downtime feed."""

from datetime import timedelta

from conftest import T0
from sqlmodel import Session

from netwatch.registry.audit import append_log, recent_downtime, recent_logs
from netwatch.registry.models import DeviceStatus


def test_append_log(session: Session, make_device):
    device_id = make_device()
    entry = append_log(session, device_id, DeviceStatus.offline, 0, T0)
    assert entry.id is not None
    assert entry.device_id == device_id
    assert entry.status == DeviceStatus.offline


def test_recent_logs_newest_first(session: Session, make_device):
    device_id = make_device()
    append_log(session, device_id, DeviceStatus.offline, 0, T0)
    append_log(session, device_id, DeviceStatus.online, 12, T0 + timedelta(minutes=1))

    history = recent_logs(session, device_id)
    assert [e.status for e in history] == [DeviceStatus.online, DeviceStatus.offline]


def test_recent_logs_ties_broken_by_insertion(session: Session, make_device):
    device_id = make_device()
    first = append_log(session, device_id, DeviceStatus.offline, 0, T0)
    second = append_log(session, device_id, DeviceStatus.online, 0, T0)

    history = recent_logs(session, device_id)
    assert [e.id for e in history] == [second.id, first.id]


def test_recent_logs_limit_and_filter(session: Session, make_device):
    device_id = make_device()
    other_id = make_device(name="Other", address="10.0.0.2")
    for i in range(5):
        append_log(session, device_id, DeviceStatus.online, i, T0 + timedelta(seconds=i))
    append_log(session, other_id, DeviceStatus.offline, 0, T0)

    history = recent_logs(session, device_id, limit=3)
    assert len(history) == 3
    assert all(e.device_id == device_id for e in history)
    assert history[0].latency == 4


def test_recent_downtime_only_offline_with_device_info(session: Session, make_device):
    switch_id = make_device(name="Core Switch 01", address="192.168.1.1")
    server_id = make_device(name="Backup Server", address="192.168.1.100")
    append_log(session, switch_id, DeviceStatus.offline, 0, T0)
    append_log(session, switch_id, DeviceStatus.online, 3, T0 + timedelta(minutes=1))
    append_log(session, server_id, DeviceStatus.offline, 0, T0 + timedelta(minutes=2))

    feed = recent_downtime(session)
    assert len(feed) == 2
    entry, name, address = feed[0]
    assert entry.device_id == server_id
    assert name == "Backup Server"
    assert address == "192.168.1.100"
    assert feed[1][1] == "Core Switch 01"


def test_recent_downtime_limit(session: Session, make_device):
    device_id = make_device()
    for i in range(4):
        append_log(session, device_id, DeviceStatus.offline, 0, T0 + timedelta(seconds=i))
    assert len(recent_downtime(session, limit=2)) == 2
