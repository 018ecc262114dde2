"""
PSNL test fixtures.

Provides a sample configuration, a fake Proxmox client and a virtual clock.
Nothing here talks to a real Proxmox server.
"""
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from psnl_agent.config import parse_config


SAMPLE_CONFIG = {
    "timezone": "Asia/Seoul",
    "servers": {
        "https://pve.test:8006/": {
            "id": "root@pam!psnl",
            "secret": "s3cr3t-token",
            "nodes": {
                "pve1": [
                    {"type": "lxc", "id": 101, "sched": {"23:00": {"net0": 0}, "07:00": {"net0": 5}}},
                    {"type": "qemu", "id": 200, "sched": {"09:00": {"net0": 10, "net1": 2}, "18:30": {"net0": 0}}},
                ],
            },
        },
    },
}


class VirtualClock:
    """Settable clock for driving TriggerRegistry without real time."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeProxmox:
    """In-memory stand-in for ProxmoxClient keyed by (node, type, id)."""

    def __init__(self, guests=None, write_result=True):
        self.guests = guests or {}
        self.read_config = AsyncMock(side_effect=self._read)
        self.write_config = AsyncMock(side_effect=self._write)
        self.write_result = write_result
        self.aclose = AsyncMock()

    async def _read(self, node, guest_type, guest_id):
        return dict(self.guests.get((node, guest_type, guest_id), {}))

    async def _write(self, node, guest_type, guest_id, patch):
        self.guests.setdefault((node, guest_type, guest_id), {}).update(patch)
        return self.write_result


@pytest.fixture
def sample_config_data():
    return json.loads(json.dumps(SAMPLE_CONFIG))


@pytest.fixture
def sample_config(sample_config_data):
    return parse_config(sample_config_data)


@pytest.fixture
def config_file(tmp_path, sample_config_data):
    path = tmp_path / "config.json"
    path.write_text(json.dumps(sample_config_data))
    return path


@pytest.fixture
def clock():
    return VirtualClock(datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def fake_proxmox():
    return FakeProxmox({
        ("pve1", "lxc", 101): {"hostname": "ct101", "net0": "name=eth0,bridge=vmbr0,hwaddr=BC:24:11:00:00:01,ip=dhcp"},
        ("pve1", "qemu", 200): {
            "name": "vm200",
            "net0": "virtio=BC:24:11:00:00:02,bridge=vmbr0,firewall=1,rate=3",
            "net1": "virtio=BC:24:11:00:00:03,bridge=vmbr1",
        },
    })
