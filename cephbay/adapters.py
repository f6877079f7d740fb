"""
Thin wrappers around the system tools cephbay depends on.

Each class shells out through cephbay.util and hands back parsed values, so the
rest of the code never sees raw command output.
"""

import json
import os
import re
import shutil
import stat

from cephbay.chassis import parse_lsscsi
from cephbay.errors import (ClusterError, CommandError, HealthCheckError, ParseError,
                            RemoteRemovalError)
from cephbay.util import (debug_print, read_log_lines, rotated_logs, run_checked,
                          run_command, run_status)

# smartctl exit status bits 0 and 1: bad command line, device open failed
SMARTCTL_UNUSABLE = 0b11

SERIAL_RE = re.compile(r'^Serial [Nn]umber:\s*(\S.*?)\s*$', re.MULTILINE)
OSD_UNIT_RE = re.compile(r'ceph-osd@(\d+)\.service')


class BusEnumerator:
    """Devices currently attached to the SCSI bus (lsscsi)."""

    def entries(self):
        return parse_lsscsi(run_checked(["lsscsi"]))


class SmartProbe:
    """Drive health and identity via smartctl."""

    def health(self, device):
        """
        Returns:
            (passed, summary): summary is the errors-only report when not passed

        Raises:
            HealthCheckError: smartctl missing or unable to talk to the device
        """
        result = run_status(["smartctl", "-H", "-q", "silent", device])
        if result is None:
            raise HealthCheckError("smartctl is not installed")
        if result.returncode == 0:
            return True, None
        if result.returncode & SMARTCTL_UNUSABLE:
            raise HealthCheckError(f"smartctl could not query {device} (exit {result.returncode})")

        report = run_status(["smartctl", "-H", "-q", "errorsonly", device])
        summary = report.stdout.strip() if report else ''
        return False, summary or f"smartctl exit status {result.returncode}"

    def serial(self, device):
        result = run_status(["smartctl", "-i", device])
        if result is None:
            return None
        match = SERIAL_RE.search(result.stdout)
        return match.group(1) if match else None


class KernelLog:
    """Recent kernel messages about a device, from the rotated kern.log files."""

    def __init__(self, pattern='/var/log/kern.log*'):
        self.pattern = pattern

    @staticmethod
    def device_pattern(name, slot=None):
        terms = [rf'\[{re.escape(name)}\]', rf'dev {re.escape(name)},']
        if slot is not None:
            address = f"{slot.host}:{slot.channel}:{slot.target}:{slot.lun}"
            terms.append(rf'(?<!\d){re.escape(address)}(?!\d)')
        return re.compile('|'.join(f'({t})' for t in terms))

    def mentions(self, name, slot=None, limit=5):
        """The `limit` most recent lines mentioning the device, oldest first."""
        pattern = self.device_pattern(name, slot)
        matches = [line for line in read_log_lines(rotated_logs(self.pattern))
                   if pattern.search(line)]
        debug_print(f"{len(matches)} kernel log line(s) mention {name}")
        return matches[-limit:] if limit else matches


class MountTable:
    def source(self, path):
        """Mount source of path (findmnt), or None when nothing is mounted there."""
        source = run_command(["findmnt", "-n", "-o", "SOURCE", path], silent=True)
        return source or None

    def force_unmount(self, path):
        # lazy: succeeds even if the filesystem hangs on the dead drive
        run_checked(["umount", "-l", path])


class ServiceControl:
    def stop(self, unit):
        run_checked(["systemctl", "-q", "stop", unit])

    def disable(self, unit):
        run_checked(["systemctl", "-q", "disable", unit])

    def running_osds(self):
        output = run_command(["systemctl", "--no-pager", "--no-legend", "--state=running",
                              "-t", "service", "list-units", "ceph-osd*"], silent=True)
        return OSD_UNIT_RE.findall(output or '')


class VolumeManager:
    def physical_volume(self, lv_path):
        """The PV backing an LVM logical volume."""
        output = run_checked(["pvs", "--noheadings", "-o", "pv_name", "-S", f"lv_path={lv_path}"])
        pv = output.replace(' ', '').splitlines()[0] if output.strip() else ''
        if not pv:
            raise ParseError(f"No physical volume found for {lv_path}")
        return pv


class OsdDirectory:
    """The OSD data directory, /var/lib/ceph/osd/<cluster>-<id>."""

    def __init__(self, osd_id, config):
        self.osd_id = str(osd_id)
        self.path = config.osd_path(osd_id)

    def link_target(self, name):
        """Fully resolved target of a symlink in the directory if it exists (readlink -e)."""
        link = os.path.join(self.path, name)
        if not os.path.exists(link):
            return None
        return os.path.realpath(link)

    def block_link(self):
        """Where the `block` symlink points, unresolved (readlink -n)."""
        try:
            return os.readlink(os.path.join(self.path, 'block'))
        except OSError as e:
            raise ParseError(f"Cannot read block symlink of osd {self.osd_id}: {e}") from e


class DeviceNodes:
    def is_block_device(self, path):
        try:
            return stat.S_ISBLK(os.stat(path).st_mode)
        except FileNotFoundError:
            return False

    def exists(self, path):
        return os.path.lexists(path)


class LedControl:
    """Enclosure failure lights via ledctl. Failures are reported, never raised."""

    def fail(self, device):
        return run_command(["ledctl", f"failure={device}"], silent=True) is not None

    def fail_all(self, devices):
        if not devices:
            return False
        return run_command(["ledctl", f"failure={{ {' '.join(devices)} }}"], silent=True) is not None

    def off(self, device):
        return run_command(["ledctl", f"off={device}"], silent=True) is not None


class CephCluster:
    """The handful of cluster operations needed to retire an OSD."""

    def __init__(self, cluster='ceph'):
        self.base = ["ceph"] if cluster == 'ceph' else ["ceph", "--cluster", cluster]

    def _run(self, *args):
        try:
            return run_checked(self.base + list(args))
        except CommandError as e:
            raise ClusterError(str(e)) from e

    def find_host(self, osd_id):
        data = run_command(self.base + ["osd", "find", str(osd_id), "--format", "json"], is_json=True)
        host = (data or {}).get('crush_location', {}).get('host')
        if not host:
            raise ClusterError(f"Unable to find host for OSD {osd_id}")
        return host

    def mark_out(self, osd_id):
        self._run("osd", "out", f"osd.{osd_id}")

    def safe_to_destroy(self, osd_id):
        result = run_status(self.base + ["osd", "safe-to-destroy", f"osd.{osd_id}"])
        if result is None:
            raise ClusterError("ceph is not installed")
        return result.returncode == 0

    def purge(self, osd_id):
        self._run("osd", "purge", str(osd_id), "--yes-i-really-mean-it")

    @staticmethod
    def admin_keyring_readable(path='/etc/ceph/ceph.client.admin.keyring'):
        return os.access(path, os.R_OK)


class RemoteHost:
    """Runs the target-side removal on the OSD host over ssh."""

    def __init__(self, command=("cephbay", "remove")):
        self.command = list(command)

    def remove(self, host, osd_id):
        result = run_status(["ssh", host] + self.command + [str(osd_id)])
        if result is None:
            raise RemoteRemovalError(host, "ssh is not installed")
        if result.returncode != 0:
            raise RemoteRemovalError(host, (result.stdout + result.stderr).strip())
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            raise RemoteRemovalError(host, result.stdout.strip()) from None


class CephVolume:
    """OSD inventory from ceph-volume on LVM-based hosts."""

    def available(self):
        return shutil.which("ceph-volume") is not None

    def list_osds(self):
        """{osd_id: {'block': drive, 'db': path, 'journal': path}}"""
        data = run_command(["ceph-volume", "lvm", "list", "--format=json"], is_json=True) or {}
        osds = {}
        for osd_id, volumes in data.items():
            found = {}
            for volume in volumes:
                kind = volume.get('type')
                if kind == 'block':
                    devices = volume.get('devices') or []
                    found['block'] = devices[0] if devices else None
                elif kind in ('db', 'journal'):
                    found[kind] = volume.get('path')
            osds[str(osd_id)] = found
        return osds


class SystemLogger:
    def log(self, tag, message):
        run_checked(["logger", "-t", tag, "-p", "daemon.info", message])
