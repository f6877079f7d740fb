"""
Removal of a failed OSD.

Two halves, run on different machines:

    RemovalOrchestrator  on the OSD host: check the chassis, find the drive,
                         stop the OSD, unmount it, report what was found.
    FailedOsdManager     on a mon/mgr host: run the above over ssh, then mark
                         the OSD out, wait until it is safe to destroy and purge.

Nothing irreversible happens to the cluster before the purge, so the wait can
be interrupted and resumed.
"""

import time

from cephbay.adapters import (BusEnumerator, CephCluster, MountTable, RemoteHost,
                              ServiceControl)
from cephbay.chassis import validate_topology
from cephbay.errors import CephBayError, RemovalAborted
from cephbay.facts import DriveFactCollector, DriveRecord
from cephbay.util import debug_print

START = 'start'
TOPOLOGY_VALIDATED = 'topology-validated'
LOCATED = 'located'
SERVICE_STOPPED = 'service-stopped'
UNMOUNTED = 'unmounted'
FACTS_EMITTED = 'facts-emitted'

SAFE_TO_DESTROY_INTERVAL = 60


class RemovalOrchestrator:
    """Target-side removal. Silent on success; every failure carries the partial record."""

    def __init__(self, osd_id, config, bus=None, collector=None, services=None, mounts=None):
        self.osd_id = str(osd_id)
        self.config = config
        self.bus = bus or BusEnumerator()
        self.mounts = mounts or MountTable()
        self.services = services or ServiceControl()
        self.collector = collector or DriveFactCollector(self.osd_id, config, bus=self.bus,
                                                         mounts=self.mounts)
        self.record = DriveRecord(self.osd_id)
        self.state = START

    @property
    def unit(self):
        return f"ceph-osd@{self.osd_id}.service"

    def _advance(self, state):
        debug_print(f"osd {self.osd_id}: {self.state} -> {state}")
        self.state = state

    def run(self):
        """
        Returns:
            DriveRecord for the hand-off payload

        Raises:
            CephBayError (with .record set) on any failure
        """
        try:
            entries = self.bus.entries()
            validate_topology(entries, self.config)
        except CephBayError as e:
            e.record, e.state = self.record, self.state
            raise
        self._advance(TOPOLOGY_VALIDATED)

        try:
            self.collector.collect(self.record, entries)
            self._advance(LOCATED)

            self.services.stop(self.unit)
            self.services.disable(self.unit)
            self._advance(SERVICE_STOPPED)

            self.mounts.force_unmount(self.config.osd_path(self.osd_id))
            self._advance(UNMOUNTED)
        except CephBayError as e:
            e.record, e.state = self.record, self.state
            raise
        except Exception as e:
            raise RemovalAborted(f"Removal of osd {self.osd_id} failed after {self.state}: {e}",
                                 self.state, self.record) from e

        self._advance(FACTS_EMITTED)
        return self.record


class FailedOsdManager:
    """Controller-side workflow, run from a host holding the admin keyring."""

    def __init__(self, osd_id, cluster=None, remote=None, interval=SAFE_TO_DESTROY_INTERVAL,
                 sleep=time.sleep):
        self.osd_id = str(osd_id)
        self.cluster = cluster or CephCluster()
        self.remote = remote or RemoteHost()
        self.interval = interval
        self.sleep = sleep

    def remove_on_host(self):
        """Run the target side; returns (host, payload)."""
        host = self.cluster.find_host(self.osd_id)
        debug_print(f"OSD {self.osd_id} lives on {host}")
        return host, self.remote.remove(host, self.osd_id)

    def mark_out(self):
        self.cluster.mark_out(self.osd_id)

    def wait_safe_to_destroy(self, progress_callback=None):
        """
        Poll until the cluster has moved all data off the OSD. Unbounded;
        KeyboardInterrupt propagates and leaves the OSD out but intact.

        Args:
            progress_callback: Optional function(attempt) called after each sleep
        """
        attempt = 0
        while not self.cluster.safe_to_destroy(self.osd_id):
            self.sleep(self.interval)
            attempt += 1
            if progress_callback:
                progress_callback(attempt)
        debug_print(f"OSD {self.osd_id} safe to destroy after {attempt} poll(s)")

    def purge(self):
        self.cluster.purge(self.osd_id)
