"""
cephbay - find and retire the drive behind a failed Ceph OSD

Usage:
    sudo cephbay inspect 42          # what is wrong with osd.42 and where is it
    sudo cephbay remove 42           # on the OSD host: stop, unmount, emit JSON
    cephbay manage 42                # on a mon host (ssh -A): the whole removal
    cephbay manage --resume 42       # continue after an interrupted wait
    sudo cephbay led /dev/sdm        # light the failure LED
    sudo cephbay log-journals        # nightly, from cron
    cephbay history --osd 42
    cephbay show-bay 44
"""

import argparse
import json
import os
import shlex
import sys

from cephbay import VERSION
from cephbay.adapters import (BusEnumerator, CephCluster, CephVolume, DeviceNodes, LedControl,
                              MountTable, RemoteHost, ServiceControl, SmartProbe, SystemLogger)
from cephbay.chassis import DIAGRAM_LAYOUTS, ChassisConfig, layout_splits, validate_topology
from cephbay.display import (bay_panel, dump_lines, history_table, make_console, show_error,
                             show_inspection, show_removal_details)
from cephbay.errors import CephBayError, TopologyError
from cephbay.facts import DriveFactCollector
from cephbay.history import SYSLOG_PATTERN, HistoryIndex, write_snapshot
from cephbay.removal import SAFE_TO_DESTROY_INTERVAL, FailedOsdManager, RemovalOrchestrator
from cephbay.util import debug_print, set_debug, warning_print

DEFAULT_CHASSIS_CONFIG = '/etc/cephbay/chassis.json'


def require_root():
    if os.geteuid() != 0:
        print("ERROR: This command must be run with sudo", file=sys.stderr)
        return False
    return True


def load_config(args):
    path = args.chassis_config
    if path is None and os.path.exists(DEFAULT_CHASSIS_CONFIG):
        path = DEFAULT_CHASSIS_CONFIG
    if path:
        debug_print(f"Loading chassis config from {path}")
        return ChassisConfig.from_json(path)
    return ChassisConfig()


def diagram_splits(args, config):
    layout = args.diagram_layout or args.default_layout
    return layout_splits(layout) if layout else config.column_splits


def cmd_inspect(args, config):
    if not require_root():
        return 1
    console = make_console()
    bus = BusEnumerator()
    entries = bus.entries()

    record = DriveFactCollector(args.osd, config, bus=bus).collect(entries=entries)

    led_lit = bool(record.device_present) and LedControl().fail(record.device_node)
    if record.device_present and not led_lit:
        warning_print(f"Failed to light up {record.device_node} drive bay.")

    topology_error = None
    try:
        validate_topology(entries, config)
    except TopologyError as e:
        topology_error = e

    show_inspection(console, record, config, diagram_splits(args, config), led_lit, topology_error)
    return 0


def cmd_remove(args, config):
    """Target side. stdout is read by `cephbay manage`: JSON on success, a dump on failure."""
    if not require_root():
        return 1
    orchestrator = RemovalOrchestrator(args.osd, config)
    try:
        record = orchestrator.run()
    except CephBayError as e:
        print(e)
        for line in dump_lines(e.record):
            print(line)
        if e.state:
            print(f"stopped at: {e.state}")
        return 1
    print(json.dumps(record.payload()))
    return 0


def cmd_manage(args, config):
    if not CephCluster.admin_keyring_readable():
        print("Must be run on a mon/mgr host (with the admin keyring available)", file=sys.stderr)
        return 1
    if not args.resume and not os.environ.get('SSH_AUTH_SOCK'):
        print("You must run this with agent-forwarding enabled (i.e. ssh -A)", file=sys.stderr)
        return 1

    console = make_console()
    osd = args.osd
    manager = FailedOsdManager(osd, cluster=CephCluster(config.cluster),
                               remote=RemoteHost(shlex.split(args.remote_command)),
                               interval=args.interval)

    if not args.resume:
        host, payload = manager.remove_on_host()
        show_removal_details(console, host, payload, config, diagram_splits(args, config))

    console.print(f"\nRemoving OSD {osd} from cluster")
    manager.mark_out()
    console.print(f"Waiting for OSD {osd} to be safe to destroy (takes a long time!)")
    try:
        manager.wait_safe_to_destroy(progress_callback=lambda attempt: console.print(".", end=""))
    except KeyboardInterrupt:
        console.print(f"\n[yellow]Interrupted. OSD {osd} is out but has not been purged.\n"
                      f"Run 'cephbay manage --resume {osd}' to finish.[/yellow]")
        return 130
    console.print()
    manager.purge()
    console.print("[green bold]All done, safe to replace drive[/green bold]")
    return 0


def cmd_led(args, config):
    if not require_root():
        return 1
    leds = LedControl()
    nodes = DeviceNodes()
    device = args.device

    if device is not None:
        if nodes.is_block_device(device):
            if leds.fail(device):
                print(f"The red failure light should be illuminated on the {device} drive bay.")
            else:
                warning_print(f"Failed to light up {device} drive bay.")
            return 0
        if nodes.exists(device):
            print(f"Error: {device} exists but isn't a block device", file=sys.stderr)
            return 1
        print(f"Device {device} missing, will try to light up all the other drives")

    entries = BusEnumerator().entries()
    devices = [e.device for e in entries
               if e.is_disk and e.device and e.address.host in config.led_hosts]
    if leds.fail_all(devices):
        print("Every red light *except* on the failed drive(s) should be lit!")
    else:
        warning_print("Attempting to light up the non-faulty drives failed")
    return 0


def cmd_log_journals(args, config):
    if not require_root():
        return 1
    write_snapshot(CephVolume(), ServiceControl(), MountTable(), SmartProbe(), LedControl(),
                   SystemLogger(), config)
    return 0


def cmd_history(args, config):
    summary = HistoryIndex(args.log_pattern).summary(args.osd)
    if args.export:
        summary.to_csv(args.export, index=False)
        print(f"✓ Exported {len(summary)} record(s) to CSV: {args.export}")
        return 0
    if summary.empty:
        print("No snapshot records found")
        return 1
    make_console().print(history_table(summary))
    return 0


def cmd_show_bay(args, config):
    make_console().print(bay_panel(args.bay, config, diagram_splits(args, config)))
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog='cephbay',
        description='Find and retire the drive behind a failed Ceph OSD'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {VERSION}')
    parser.add_argument('--debug', action='store_true',
                        help='Print debug output to stderr')
    parser.add_argument('--chassis-config', metavar='FILE',
                        help=f'Chassis layout JSON (default: {DEFAULT_CHASSIS_CONFIG} if present)')
    sub = parser.add_subparsers(dest='command', required=True)

    def add_layout(p, default):
        p.add_argument('--diagram-layout', choices=sorted(DIAGRAM_LAYOUTS),
                       help='Column grouping of the bay diagram')
        p.set_defaults(default_layout=default)

    p = sub.add_parser('inspect', help='Report on the drive behind a failed OSD (read-only)')
    p.add_argument('osd', help='OSD id')
    add_layout(p, '7+6+2')
    p.set_defaults(func=cmd_inspect)

    p = sub.add_parser('remove', help='On the OSD host: stop and unmount the OSD, emit JSON')
    p.add_argument('osd', help='OSD id')
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser('manage', help='On a mon host: remove the OSD end to end')
    p.add_argument('osd', help='OSD id')
    p.add_argument('--resume', action='store_true',
                   help='Skip the OSD host step (already done) and continue with mark out / purge')
    p.add_argument('--interval', type=int, default=SAFE_TO_DESTROY_INTERVAL,
                   help='Seconds between safe-to-destroy checks')
    p.add_argument('--remote-command', default='cephbay remove',
                   help='Command run over ssh on the OSD host')
    add_layout(p, None)
    p.set_defaults(func=cmd_manage)

    p = sub.add_parser('led', help='Light the failure LED of a drive (or of every other drive)')
    p.add_argument('device', nargs='?', help='Block device, e.g. /dev/sdm')
    p.set_defaults(func=cmd_led)

    p = sub.add_parser('log-journals', help='Log OSD journal and serial mappings (run from cron)')
    p.set_defaults(func=cmd_log_journals)

    p = sub.add_parser('history', help='Show the newest snapshot record per OSD')
    p.add_argument('--osd', help='Only this OSD id')
    p.add_argument('--export', metavar='CSV', help='Write the table to a CSV file')
    p.add_argument('--log-pattern', default=SYSLOG_PATTERN,
                   help='Glob of syslog files to read')
    p.set_defaults(func=cmd_history)

    p = sub.add_parser('show-bay', help='Draw where a bay is in the chassis')
    p.add_argument('bay', type=int)
    add_layout(p, None)
    p.set_defaults(func=cmd_show_bay)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    set_debug(args.debug)
    try:
        config = load_config(args)
        return args.func(args, config)
    except CephBayError as e:
        show_error(make_console(), e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
