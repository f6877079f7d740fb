"""Shared test fixtures."""

import pytest

from cephbay.chassis import ChassisConfig, parse_lsscsi
from cephbay.errors import HealthCheckError
from cephbay.history import HistoricalLogEntry

# lsscsi lists NVMe namespaces with an "N" host
NVME_LINE = "[N:0:4:1]    disk    INTEL SSDPE2KX010T8__1                     /dev/nvme0n1"


def dev_for_slot(number):
    """Device node the fake bus gives a slot: 0 -> /dev/sda, 26 -> /dev/sdba, ..."""
    letters = chr(ord('a') + number % 26)
    if number >= 26:
        letters = chr(ord('a') + number // 26) + letters
    return f"/dev/sd{letters}"


def lsscsi_text(missing=(), extra=None, enclosures=(30, 61), host=0):
    """
    lsscsi output for the 60-bay chassis.

    Args:
        missing: slot numbers with no disk
        extra: {slot_number: device} for disks outside the normal range
        enclosures: slots showing up as enclosure controllers
    """
    lines = []
    for n in range(62):
        address = f"[{host}:0:{n}:0]"
        if n in enclosures:
            lines.append(f"{address:<13}enclosu HGST     H4060-J          2033  -")
        elif n not in missing and n not in (30, 61):
            lines.append(f"{address:<13}disk    SEAGATE  ST8000NM0075     E004  {dev_for_slot(n)}")
    for n, device in (extra or {}).items():
        lines.append(f"[{host}:0:{n}:0]   disk    SEAGATE  ST8000NM0075     E004  {device}")
    lines.append("[1:0:0:0]    cd/dvd  HL-DT-ST DVD-ROM DU90N    D2C0  /dev/sr0")
    lines.append("[12:0:0:0]   disk    ATA      INTEL SSDSC2KB24 0100  /dev/sdzz")
    lines.append(NVME_LINE)
    return "\n".join(lines) + "\n"


class FakeBus:
    def __init__(self, text=None, **kwargs):
        self.text = text if text is not None else lsscsi_text(**kwargs)
        self.calls = 0

    def entries(self):
        self.calls += 1
        return parse_lsscsi(self.text)


class FakeMounts:
    def __init__(self, sources=None):
        self.sources = sources or {}
        self.unmounted = []

    def source(self, path):
        return self.sources.get(path)

    def force_unmount(self, path):
        self.unmounted.append(path)


class FakeSmart:
    def __init__(self, passed=False, summary="SMART overall-health self-assessment test result: FAILED!",
                 serial="ZA1B2C3D", error=False):
        self.passed = passed
        self.summary = summary
        self.serial_number = serial
        self.error = error

    def health(self, device):
        if self.error:
            raise HealthCheckError(f"smartctl could not query {device} (exit 2)")
        return (True, None) if self.passed else (False, self.summary)

    def serial(self, device):
        return self.serial_number


class FakeKernel:
    def __init__(self, lines=()):
        self.lines = list(lines)
        self.queries = []

    def mentions(self, name, slot=None, limit=5):
        self.queries.append((name, slot))
        return list(self.lines[-limit:])


class FakeHistory:
    def __init__(self, serial=None, aux_device=None):
        self.serial = serial
        self.aux_device = aux_device
        self.lookups = []

    def lookup(self, osd_id):
        self.lookups.append(str(osd_id))
        if self.serial is None and self.aux_device is None:
            return None
        return HistoricalLogEntry(str(osd_id), self.aux_device, self.serial, 0)


class FakeDevices:
    def __init__(self, present=()):
        self.present = set(present)

    def is_block_device(self, path):
        return path in self.present

    def exists(self, path):
        return path in self.present


class FakeOsdDir:
    def __init__(self, path, links=None, block=None):
        self.path = path
        self.links = links or {}
        self.block = block

    def link_target(self, name):
        return self.links.get(name)

    def block_link(self):
        return self.block


class FakeVolumes:
    def __init__(self, mapping=None):
        self.mapping = mapping or {}

    def physical_volume(self, lv_path):
        return self.mapping[lv_path]


class FakeServices:
    def __init__(self, events=None):
        self.events = events if events is not None else []

    def stop(self, unit):
        self.events.append(('stop', unit))

    def disable(self, unit):
        self.events.append(('disable', unit))


@pytest.fixture
def config():
    return ChassisConfig()


@pytest.fixture
def osd_path(config):
    return config.osd_path("42")
