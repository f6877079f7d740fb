"""
Drive fact collector.

Works out everything an operator needs to pull the drive behind an OSD: the
device node, its bay, serial number, journal / block.db location and health.
Each fact comes from the live system when the drive is still there and from the
nightly snapshot log when it is not.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Optional

from cephbay.adapters import (BusEnumerator, DeviceNodes, KernelLog, MountTable,
                              OsdDirectory, SmartProbe, VolumeManager)
from cephbay.bays import bay_for_slot, missing_bay
from cephbay.chassis import SlotAddress, current_slots, expected_slots, slot_of_device
from cephbay.errors import (AuxDeviceUnknownError, CephBayError, HealthCheckError, NoMissingSlotError,
                            NotADiskIssueError, NotMountedError, OutOfRangeError, SerialUnknownError,
                            SoftLookupError)
from cephbay.history import HistoryIndex
from cephbay.util import debug_print, warning_print

UNKNOWN = "unknown"

HEALTHY = 'healthy'
DEGRADED = 'degraded'
ABSENT = 'absent'


@dataclass(frozen=True)
class HealthStatus:
    state: str
    details: Optional[str] = None

    @classmethod
    def healthy(cls):
        return cls(HEALTHY)

    @classmethod
    def degraded(cls, details):
        return cls(DEGRADED, details)

    @classmethod
    def absent(cls):
        return cls(ABSENT)

    @classmethod
    def unknown(cls, details=None):
        return cls(UNKNOWN, details)

    def __str__(self):
        if self.state == DEGRADED:
            return self.details or DEGRADED
        return self.state


@dataclass
class DriveRecord:
    """What is known about the drive behind one OSD; filled in step by step."""

    osd_id: str
    partition: Optional[str] = None
    device_node: Optional[str] = None
    device_present: Optional[bool] = None
    slot: Optional[SlotAddress] = None
    bay: Optional[int] = None
    serial: Optional[str] = None
    aux_device: Optional[str] = None
    health: Optional[HealthStatus] = None
    kernel_entries: list = field(default_factory=list)

    @property
    def device_name(self):
        return os.path.basename(self.device_node) if self.device_node else None

    def payload(self):
        """The hand-off object the controller side parses; every value is text."""
        return {
            'disk': self.device_node or '',
            'bay': '' if self.bay is None else str(self.bay),
            'serial': self.serial or UNKNOWN,
            'aux_device': self.aux_device or UNKNOWN,
            'health': str(self.health) if self.health else UNKNOWN,
        }

    def resolved_fields(self):
        """(label, value) for every field found so far, for failure dumps."""
        fields = [
            ("osd", self.osd_id),
            ("partition", self.partition),
            ("disk", self.device_node),
            ("slot", self.slot),
            ("bay", self.bay),
            ("serial", self.serial),
            ("SMART status", self.health),
            ("block.db/journal", self.aux_device),
        ]
        return [(label, str(value)) for label, value in fields if value is not None]


def disk_from_partition(partition):
    """/dev/sdm1 -> /dev/sdm, /dev/nvme0n1p2 -> /dev/nvme0n1"""
    disk = re.sub(r'\d+$', '', partition)
    if disk != partition and re.search(r'\dp$', disk):
        disk = disk[:-1]
    return disk


class DriveFactCollector:
    """
    Resolves a DriveRecord for one OSD.

    Collaborators default to the real system; tests hand in fakes.
    """

    def __init__(self, osd_id, config, bus=None, smart=None, kernel=None, mounts=None,
                 volumes=None, history=None, devices=None, osd_dir=None):
        self.osd_id = str(osd_id)
        self.config = config
        self.bus = bus or BusEnumerator()
        self.smart = smart or SmartProbe()
        self.kernel = kernel or KernelLog()
        self.mounts = mounts or MountTable()
        self.volumes = volumes or VolumeManager()
        self.history = history or HistoryIndex()
        self.devices = devices or DeviceNodes()
        self.osd_dir = osd_dir or OsdDirectory(self.osd_id, config)
        self._history_entry = None
        self._history_read = False

    def collect(self, record=None, entries=None):
        """
        Fill in `record` (a fresh DriveRecord if None) and return it.

        Args:
            entries: bus enumeration already taken by the caller, if any

        Raises:
            NotMountedError: the OSD directory is not mounted
            NotADiskIssueError: the drive looks fine; nothing to replace
            MultipleMissingError: several slots are empty; bay must not be guessed
        """
        if record is None:
            record = DriveRecord(self.osd_id)
        try:
            return self._collect(record, entries)
        except CephBayError as e:
            if e.record is None:
                e.record = record
            raise

    def _collect(self, record, entries):
        record.partition = self.mounts.source(self.osd_dir.path)
        if not record.partition:
            raise NotMountedError(f"Unable to locate mount point for osd {self.osd_id}", record)

        record.device_node = self.locate_disk(record.partition)
        record.device_present = self.devices.is_block_device(record.device_node)
        debug_print(f"OSD {self.osd_id} is on partition {record.partition} on disk {record.device_node} "
                    f"({'present' if record.device_present else 'absent'})")

        if entries is None:
            entries = self.bus.entries()

        if record.device_present:
            record.slot = slot_of_device(entries, record.device_node)
            record.health = self.check_health(record.device_node)
            record.kernel_entries = self.kernel.mentions(record.device_name, record.slot)
            if record.health.state == HEALTHY and not record.kernel_entries:
                raise NotADiskIssueError(
                    f"Drive {record.device_node} healthy and no mentions in kernel log; "
                    f"assuming this isn't a disk issue", record)
        else:
            # a missing device node is the failure; any cached health is stale
            record.health = HealthStatus.absent()
            record.kernel_entries = self.kernel.mentions(record.device_name)
            if not record.kernel_entries:
                warning_print(f"Block device {record.device_node} absent but no recent kernel log activity")

        record.serial = self.fail_soft(self.lookup_serial, record)
        record.bay = self.locate_bay(record, entries)
        record.aux_device = self.fail_soft(self.lookup_aux_device, record)
        return record

    def locate_disk(self, partition):
        """Disk device under the OSD, via LVM when the data dir is a ceph-volume tmpfs."""
        if partition == self.config.lvm_sentinel:
            lv_path = self.osd_dir.block_link()
            return self.volumes.physical_volume(lv_path)
        return disk_from_partition(partition)

    def check_health(self, device):
        try:
            passed, summary = self.smart.health(device)
        except HealthCheckError as e:
            warning_print(str(e))
            return HealthStatus.unknown(str(e))
        if passed:
            return HealthStatus.healthy()
        return HealthStatus.degraded(summary)

    def lookup_serial(self, record):
        if record.device_present:
            serial = self.smart.serial(record.device_node)
            if serial:
                return serial
        entry = self.logged_entry()
        if entry and entry.serial:
            debug_print(f"Serial number for osd {self.osd_id} taken from snapshot log line {entry.line}")
            return entry.serial
        raise SerialUnknownError(f"No serial number known for osd {self.osd_id}", record)

    def lookup_aux_device(self, record):
        for name in ('journal', 'block.db'):
            target = self.osd_dir.link_target(name)
            if target:
                return target
        entry = self.logged_entry()
        if entry and entry.aux_device:
            debug_print(f"Journal/block.db for osd {self.osd_id} taken from snapshot log line {entry.line}")
            return entry.aux_device
        raise AuxDeviceUnknownError(f"No journal or block.db known for osd {self.osd_id}", record)

    def logged_entry(self):
        """Newest snapshot log entry for this OSD; the log is searched once."""
        if not self._history_read:
            self._history_entry = self.history.lookup(self.osd_id)
            self._history_read = True
        return self._history_entry

    def fail_soft(self, lookup, record):
        try:
            return lookup(record)
        except SoftLookupError as e:
            warning_print(str(e))
            return UNKNOWN

    def locate_bay(self, record, entries):
        expected = expected_slots(self.config)
        observed = current_slots(entries, self.config)
        try:
            if record.device_present:
                return bay_for_slot(record.slot, expected, observed, self.config)
            return missing_bay(expected, observed, self.config)
        except (NoMissingSlotError, OutOfRangeError) as e:
            warning_print(f"{e}; bay unknown")
            return None
