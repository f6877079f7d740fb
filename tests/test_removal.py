"""Tests for the removal state machine and the controller workflow."""

from unittest.mock import MagicMock

import pytest

from cephbay.errors import (MultipleMissingError, NotADiskIssueError, RemovalAborted,
                            RemoteRemovalError, TopologyError)
from cephbay.facts import UNKNOWN, DriveFactCollector
from cephbay.removal import (FACTS_EMITTED, LOCATED, SERVICE_STOPPED, START, TOPOLOGY_VALIDATED,
                             FailedOsdManager, RemovalOrchestrator)

from conftest import (FakeBus, FakeDevices, FakeHistory, FakeKernel, FakeMounts, FakeOsdDir,
                      FakeServices, FakeSmart, FakeVolumes, NVME_LINE, lsscsi_text)


class RecordingMounts(FakeMounts):
    def __init__(self, sources, events):
        super().__init__(sources)
        self.events = events

    def force_unmount(self, path):
        super().force_unmount(path)
        self.events.append(('umount', path))


class BrokenServices(FakeServices):
    def disable(self, unit):
        raise OSError("systemctl hung up")


def make_orchestrator(config, osd_path, bus=None, smart=None, kernel=None, present=True,
                      history=None, services=None):
    events = []
    mounts = RecordingMounts({osd_path: '/dev/sdbt1'}, events)
    bus = bus or FakeBus()
    collector = DriveFactCollector(
        "42", config, bus=bus,
        smart=smart or FakeSmart(),
        kernel=kernel or FakeKernel(["sd 0:0:45:0: [sdbt] tag#3 FAILED Result"]),
        mounts=mounts,
        volumes=FakeVolumes(),
        history=history or FakeHistory(serial='ZA1LOGGED', aux_device='/dev/nvme0n1p9'),
        devices=FakeDevices(['/dev/sdbt'] if present else []),
        osd_dir=FakeOsdDir(osd_path),
    )
    orchestrator = RemovalOrchestrator("42", config, bus=bus, collector=collector,
                                       services=services or FakeServices(events), mounts=mounts)
    return orchestrator, events


def test_happy_path(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path)

    record = orchestrator.run()

    assert orchestrator.state == FACTS_EMITTED
    assert events == [
        ('stop', 'ceph-osd@42.service'),
        ('disable', 'ceph-osd@42.service'),
        ('umount', osd_path),
    ]
    assert record.payload() == {
        'disk': '/dev/sdbt',
        'bay': '44',
        'serial': 'ZA1B2C3D',
        'aux_device': '/dev/nvme0n1p9',
        'health': 'SMART overall-health self-assessment test result: FAILED!',
    }


def test_bus_enumerated_once(config, osd_path):
    orchestrator, _ = make_orchestrator(config, osd_path)
    orchestrator.run()
    assert orchestrator.bus.calls == 1


def test_nvme_journal_on_the_bus_does_not_stop_removal(config, osd_path):
    text = lsscsi_text(missing=(45,))
    assert NVME_LINE in text
    orchestrator, events = make_orchestrator(config, osd_path, bus=FakeBus(text=text), present=False)

    record = orchestrator.run()

    assert orchestrator.state == FACTS_EMITTED
    assert record.bay == 44
    assert len(events) == 3


def test_bad_topology_changes_nothing(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path, bus=FakeBus(enclosures=(30,)))

    with pytest.raises(TopologyError) as excinfo:
        orchestrator.run()

    assert events == []
    assert orchestrator.state == START
    assert excinfo.value.record is orchestrator.record
    assert excinfo.value.state == START


def test_healthy_drive_is_left_running(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path, smart=FakeSmart(passed=True),
                                             kernel=FakeKernel())

    with pytest.raises(NotADiskIssueError) as excinfo:
        orchestrator.run()

    assert events == []
    assert excinfo.value.record.device_node == '/dev/sdbt'
    assert excinfo.value.state == TOPOLOGY_VALIDATED


def test_ambiguous_bay_changes_nothing(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path, present=False,
                                             bus=FakeBus(missing=(9, 45)))

    with pytest.raises(MultipleMissingError) as excinfo:
        orchestrator.run()

    assert events == []
    assert excinfo.value.bays == [9, 44]
    assert excinfo.value.record.serial == 'ZA1LOGGED'


def test_unknown_facts_do_not_stop_removal(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path, present=False,
                                             bus=FakeBus(missing=(45,)), history=FakeHistory())

    record = orchestrator.run()

    assert orchestrator.state == FACTS_EMITTED
    assert record.serial == UNKNOWN
    assert record.aux_device == UNKNOWN
    assert record.health.state == 'absent'
    assert record.bay == 44
    assert len(events) == 3


def test_unexpected_failure_is_wrapped(config, osd_path):
    orchestrator, events = make_orchestrator(config, osd_path, services=BrokenServices())

    with pytest.raises(RemovalAborted) as excinfo:
        orchestrator.run()

    error = excinfo.value
    assert error.state == LOCATED
    assert "systemctl hung up" in str(error)
    assert isinstance(error.__cause__, OSError)
    assert error.record.bay == 44
    assert orchestrator.state != SERVICE_STOPPED


def test_manager_remove_on_host():
    cluster = MagicMock()
    cluster.find_host.return_value = 'sto-2-4'
    remote = MagicMock()
    remote.remove.return_value = {'disk': '/dev/sdbt', 'bay': '44'}

    host, payload = FailedOsdManager(42, cluster=cluster, remote=remote).remove_on_host()

    assert host == 'sto-2-4'
    assert payload['bay'] == '44'
    cluster.find_host.assert_called_once_with('42')
    remote.remove.assert_called_once_with('sto-2-4', '42')


def test_manager_remote_failure_propagates():
    cluster = MagicMock()
    cluster.find_host.return_value = 'sto-2-4'
    remote = MagicMock()
    remote.remove.side_effect = RemoteRemovalError('sto-2-4', "Drive healthy")

    with pytest.raises(RemoteRemovalError, match="sto-2-4"):
        FailedOsdManager(42, cluster=cluster, remote=remote).remove_on_host()
    cluster.mark_out.assert_not_called()


def test_wait_safe_to_destroy_polls_at_interval():
    cluster = MagicMock()
    cluster.safe_to_destroy.side_effect = [False, False, False, True]
    sleep = MagicMock()
    progress = []

    manager = FailedOsdManager(7, cluster=cluster, remote=MagicMock(), interval=5, sleep=sleep)
    manager.wait_safe_to_destroy(progress.append)

    assert progress == [1, 2, 3]
    assert sleep.call_count == 3
    sleep.assert_called_with(5)


def test_wait_safe_to_destroy_already_safe():
    cluster = MagicMock()
    cluster.safe_to_destroy.return_value = True
    sleep = MagicMock()

    FailedOsdManager(7, cluster=cluster, remote=MagicMock(), sleep=sleep).wait_safe_to_destroy()

    sleep.assert_not_called()


def test_interrupted_wait_does_not_purge():
    cluster = MagicMock()
    cluster.safe_to_destroy.return_value = False
    sleep = MagicMock(side_effect=[None, KeyboardInterrupt])
    manager = FailedOsdManager(7, cluster=cluster, remote=MagicMock(), sleep=sleep)

    with pytest.raises(KeyboardInterrupt):
        manager.wait_safe_to_destroy()

    cluster.purge.assert_not_called()


def test_mark_out_and_purge():
    cluster = MagicMock()
    manager = FailedOsdManager("7", cluster=cluster, remote=MagicMock())

    manager.mark_out()
    manager.purge()

    cluster.mark_out.assert_called_once_with("7")
    cluster.purge.assert_called_once_with("7")
