"""
Slot inventory model.

The supported chassis presents every drive bay as its own SCSI target on one
host: [0:0:0:0]-[0:0:29:0] and [0:0:31:0]-[0:0:60:0] are disks, [0:0:30:0] and
[0:0:61:0] are the two enclosure controllers. The slot number below is that
target number.
"""

import json
import re
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from cephbay.errors import ConfigError, ParseError, TopologyError
from cephbay.util import debug_print

DIAGRAM_LAYOUTS = {
    '6+6+3': (5, 11),
    '7+6+2': (6, 12),
}


class SlotAddress(NamedTuple):
    host: int
    channel: int
    target: int
    lun: int

    @property
    def number(self):
        """Slot number used for bay arithmetic."""
        return self.target

    @classmethod
    def parse(cls, text):
        match = re.fullmatch(r'\[?(\d+):(\d+):(\d+):(\d+)\]?', text.strip())
        if not match:
            raise ParseError(f"Not a SCSI address: {text!r}")
        return cls(*(int(g) for g in match.groups()))

    def __str__(self):
        return f"[{self.host}:{self.channel}:{self.target}:{self.lun}]"


class BusEntry(NamedTuple):
    address: SlotAddress
    kind: str
    device: Optional[str]

    @property
    def is_disk(self):
        return self.kind == 'disk'

    @property
    def is_enclosure(self):
        # lsscsi truncates the type column to "enclosu"
        return self.kind.startswith('enclosu')


@dataclass(frozen=True)
class ChassisConfig:
    host: int = 0
    channel: int = 0
    lun: int = 0
    enclosure_slots: tuple = (30, 61)
    max_slot: int = 61
    row_starts: tuple = (45, 30, 15, 0)
    row_length: int = 15
    column_splits: tuple = DIAGRAM_LAYOUTS['6+6+3']
    led_hosts: tuple = (0, 12)
    osd_root: str = '/var/lib/ceph/osd'
    cluster: str = 'ceph'
    lvm_sentinel: str = 'tmpfs'
    disk_slots: tuple = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        for name in ('enclosure_slots', 'row_starts', 'column_splits', 'led_hosts'):
            object.__setattr__(self, name, tuple(getattr(self, name)))

        if len(set(self.enclosure_slots)) != 2:
            raise ConfigError(f"Exactly two enclosure slots are required, got {self.enclosure_slots}")
        lower, upper = sorted(self.enclosure_slots)
        if lower < 0 or upper != self.max_slot:
            raise ConfigError(
                f"Enclosure slots {self.enclosure_slots} must lie in 0..{self.max_slot} "
                f"with the upper enclosure at the highest slot")

        disks = tuple(s for s in range(self.max_slot + 1) if s not in self.enclosure_slots)
        object.__setattr__(self, 'disk_slots', disks)

        covered = {start + i for start in self.row_starts for i in range(self.row_length)}
        if covered != set(range(len(disks))):
            raise ConfigError(
                f"Diagram rows {self.row_starts} x {self.row_length} do not cover bays 0-{len(disks) - 1}")

    @property
    def lower_enclosure(self):
        return min(self.enclosure_slots)

    @property
    def upper_enclosure(self):
        return max(self.enclosure_slots)

    @property
    def last_disk_slot(self):
        return self.disk_slots[-1]

    @property
    def total_bays(self):
        return len(self.disk_slots)

    def slot(self, number):
        """SlotAddress for a slot number on this chassis."""
        return SlotAddress(self.host, self.channel, number, self.lun)

    def osd_path(self, osd_id):
        return f"{self.osd_root}/{self.cluster}-{osd_id}"

    @classmethod
    def from_json(cls, path):
        """Load overrides from a JSON object; unknown keys are a ConfigError."""
        try:
            with open(path) as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Could not read chassis config {path}: {e}") from e

        if 'column_splits' in data and isinstance(data['column_splits'], str):
            data['column_splits'] = layout_splits(data['column_splits'])
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Bad chassis config {path}: {e}") from e


def layout_splits(name):
    """Column split indices for a named diagram layout."""
    try:
        return DIAGRAM_LAYOUTS[name]
    except KeyError:
        raise ConfigError(
            f"Unknown diagram layout {name!r} (choose from {', '.join(DIAGRAM_LAYOUTS)})") from None


def parse_lsscsi(text):
    """
    Parse `lsscsi` output.

    Lines look like:
        [0:0:45:0]   disk    SEAGATE  ST8000NM0075     E004  /dev/sdat
        [0:0:30:0]   enclosu HGST     H4060-J          2033  -

    NVMe namespaces show up as [N:0:4:1] and are not SCSI slots; lines like
    that are skipped.

    Returns:
        list of BusEntry
    """
    entries = []
    for line in (text or '').splitlines():
        fields = line.split()
        if len(fields) < 2 or not fields[0].startswith('['):
            continue
        try:
            address = SlotAddress.parse(fields[0])
        except ParseError:
            debug_print(f"Skipping lsscsi line without a SCSI address: {line.strip()}")
            continue
        device = fields[-1] if fields[-1].startswith('/dev/') else None
        entries.append(BusEntry(address, fields[1], device))
    return entries


def expected_slots(config):
    """Every slot that should hold a disk."""
    return frozenset(config.slot(n) for n in config.disk_slots)


def current_slots(entries, config):
    """Slots on the chassis host currently enumerated as disks."""
    observed = frozenset(e.address for e in entries
                         if e.is_disk and e.address.host == config.host)
    debug_print(f"{len(observed)} disk(s) enumerated on host {config.host}")
    return observed


def slot_of_device(entries, device):
    """Enumerated SlotAddress of a device node, or None."""
    for entry in entries:
        if entry.device == device:
            return entry.address
    return None


def validate_topology(entries, config):
    """
    Refuse to go on unless both enclosure controllers sit exactly where the
    chassis layout expects them; otherwise no bay number can be trusted.
    """
    for number in config.enclosure_slots:
        address = config.slot(number)
        count = sum(1 for e in entries if e.address == address and e.is_enclosure)
        if count != 1:
            raise TopologyError(
                f"LUN arrangement suspect: expected one enclosure at {address}, found {count}. "
                f"Drive location impossible to predict; do not attempt to hot-swap the drive")
    debug_print(f"Enclosures present at slots {config.enclosure_slots}")
