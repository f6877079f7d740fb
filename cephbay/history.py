"""
Historical log index.

`cephbay log-journals` runs nightly from cron and writes two syslog lines per
OSD under the `osdtojour` tag:

    osdtojour: osd 12 has journal on /dev/nvme0n1p3
    osdtojour: osd 12 is on drive /dev/sdm, drive serial ZA1B2C3D

Once a drive has died these lines are the only record of its serial number and
journal / block.db location. The newest line for an OSD wins.
"""

import re
from typing import NamedTuple, Optional

import pandas as pd

from cephbay.adapters import OsdDirectory
from cephbay.util import debug_print, read_log_lines, rotated_logs, warning_print

TAG = 'osdtojour'
SYSLOG_PATTERN = '/var/log/syslog*'

JOURNAL_RE = re.compile(TAG + r'(?:\[\d+\])?: osd (\d+) has journal on (.*)$')
SERIAL_RE = re.compile(TAG + r'(?:\[\d+\])?: osd (\d+) is on (?:drive|partition) (\S+), drive serial ?(.*)$')

COLUMNS = ['line', 'osd_id', 'field', 'value', 'device']


class HistoricalLogEntry(NamedTuple):
    osd_id: str
    aux_device: Optional[str]
    serial: Optional[str]
    line: int


def parse_snapshot_lines(lines):
    """Turn syslog lines into a DataFrame of snapshot records, in log order."""
    records = []
    for number, line in enumerate(lines):
        match = JOURNAL_RE.search(line)
        if match:
            records.append((number, match.group(1), 'aux_device', match.group(2).strip(), None))
            continue
        match = SERIAL_RE.search(line)
        if match:
            records.append((number, match.group(1), 'serial', match.group(3).strip(), match.group(2)))
    return pd.DataFrame.from_records(records, columns=COLUMNS)


class HistoryIndex:
    """Read-only reverse lookup of the snapshot log by OSD id."""

    def __init__(self, pattern=SYSLOG_PATTERN, lines=None):
        self.pattern = pattern
        self._lines = lines
        self._frame = None

    @property
    def frame(self):
        if self._frame is None:
            lines = self._lines
            if lines is None:
                paths = rotated_logs(self.pattern)
                debug_print(f"Reading snapshot records from {len(paths)} log file(s)")
                lines = read_log_lines(paths)
            self._frame = parse_snapshot_lines(lines)
            debug_print(f"Indexed {len(self._frame)} snapshot record(s)")
        return self._frame

    def _latest(self, osd_id, field):
        df = self.frame
        hits = df[(df['osd_id'] == str(osd_id)) & (df['field'] == field) & (df['value'] != '')]
        if hits.empty:
            return None, None
        newest = hits.iloc[-1]
        return newest['value'], int(newest['line'])

    def lookup(self, osd_id):
        """Newest serial and aux device for an OSD, or None if it was never logged."""
        serial, serial_line = self._latest(osd_id, 'serial')
        aux, aux_line = self._latest(osd_id, 'aux_device')
        if serial is None and aux is None:
            return None
        line = max(n for n in (serial_line, aux_line) if n is not None)
        return HistoricalLogEntry(str(osd_id), aux, serial, line)

    def summary(self, osd_id=None):
        """One row per OSD: newest serial, drive and aux device."""
        df = self.frame
        df = df[df['value'] != '']
        if osd_id is not None:
            df = df[df['osd_id'] == str(osd_id)]
        if df.empty:
            return pd.DataFrame(columns=['osd_id', 'serial', 'device', 'aux_device'])

        latest = df.groupby(['osd_id', 'field']).last().reset_index()
        serials = latest[latest['field'] == 'serial'].set_index('osd_id')
        auxes = latest[latest['field'] == 'aux_device'].set_index('osd_id')

        summary = pd.DataFrame({'osd_id': sorted(df['osd_id'].unique(), key=int)})
        summary['serial'] = summary['osd_id'].map(serials['value'])
        summary['device'] = summary['osd_id'].map(serials['device'])
        summary['aux_device'] = summary['osd_id'].map(auxes['value'])
        return summary.astype(object).where(summary.notna(), None)


def snapshot_messages(osds, smart):
    """
    Log lines for one snapshot.

    Args:
        osds: iterable of (osd_id, aux_device, drive, via) where via is
              'drive' or 'partition'
        smart: SmartProbe used to read each drive's serial number
    """
    messages = []
    for osd_id, aux_device, drive, via in osds:
        messages.append(f"osd {osd_id} has journal on {aux_device or ''}".rstrip())
        if drive:
            serial = smart.serial(drive) or ''
            messages.append(f"osd {osd_id} is on {via} {drive}, drive serial {serial}".rstrip())
    return messages


def collect_snapshot(ceph_volume, services, mounts, config):
    """
    (osd_id, aux_device, drive, via) for every OSD on this host.

    Prefers ceph-volume's own inventory; hosts without ceph-volume fall back to
    the running ceph-osd units and their data directories.
    """
    if ceph_volume.available():
        osds = []
        for osd_id, devices in sorted(ceph_volume.list_osds().items(), key=lambda kv: int(kv[0])):
            osds.append((osd_id, devices.get('db') or devices.get('journal'), devices.get('block'), 'drive'))
        return osds

    osds = []
    for osd_id in services.running_osds():
        osd_dir = OsdDirectory(osd_id, config)
        aux = osd_dir.link_target('journal')
        part = mounts.source(osd_dir.path)
        osds.append((osd_id, aux, part, 'partition'))
    return osds


def write_snapshot(ceph_volume, services, mounts, smart, leds, syslog, config):
    """Log the current OSD -> journal/serial mapping; returns the lines written."""
    # ledctl has no "all off"; turning one light off resets them all
    if not leds.off('/dev/sda'):
        warning_print("Could not reset indicator lights")

    messages = snapshot_messages(collect_snapshot(ceph_volume, services, mounts, config), smart)
    for message in messages:
        syslog.log(TAG, message)
    debug_print(f"Logged {len(messages)} snapshot line(s)")
    return messages
