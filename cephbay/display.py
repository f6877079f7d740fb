"""
Console rendering with Rich.

The target-side `remove` command prints JSON and plain dumps instead; its stdout
is read by the controller over ssh.
"""

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cephbay.bays import render_bay_diagram
from cephbay.facts import ABSENT, HEALTHY


def make_console():
    return Console(highlight=False)


def bay_panel(bay, config, splits=None):
    """The bay diagram in a panel; the X is highlighted."""
    diagram = Text(render_bay_diagram(bay, config, splits))
    diagram.highlight_regex(r'X', style="red bold")
    return Panel(
        diagram,
        title=f"Bay {bay}",
        border_style="yellow",
        box=box.ROUNDED,
        expand=False,
    )


def record_table(record):
    table = Table(box=box.SIMPLE, show_header=False)
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    for label, value in record.resolved_fields():
        table.add_row(label, escape(value))
    return table


def dump_lines(record):
    """Plain `label: value` lines for everything resolved so far."""
    if record is None:
        return []
    return [f"{label}: {value}" for label, value in record.resolved_fields()]


def show_error(console, error):
    """A failure plus whatever had been found about the drive before it."""
    body = [f"[red bold]{escape(str(error))}[/red bold]"]
    record = getattr(error, 'record', None)
    if record is not None and record.resolved_fields():
        body.append("\nFound so far:")
        body.extend(f"  [cyan]{label}[/cyan]: {escape(value)}" for label, value in record.resolved_fields())
    output = getattr(error, 'output', None)
    if output:
        body.append("\nOutput from the target host:")
        body.append(escape(output))
    console.print(Panel(
        "\n".join(body),
        title=f"✗ {type(error).__name__}",
        border_style="red",
        box=box.HEAVY,
    ))


def show_topology_warning(console, error):
    console.print(Panel(
        f"[red bold]XXX WARNING XXX\nXXX LUN ARRANGEMENT SUSPECT XXX\n"
        f"XXX DRIVE LOCATION IMPOSSIBLE TO PREDICT XXX\n"
        f"XXX DO NOT ATTEMPT TO HOT-SWAP DRIVE XXX[/red bold]\n\n{escape(str(error))}",
        border_style="red",
        box=box.HEAVY,
    ))


def show_inspection(console, record, config, splits, led_lit, topology_error=None):
    """Read-only report for `cephbay inspect`."""
    osd = record.osd_id
    console.print(f"OSD {osd} is on partition {record.partition} on disk {record.device_node}")

    if record.health and record.health.state == ABSENT:
        console.print(f"[red]Block device {record.device_node} absent, assume the drive has failed.[/red]")
    elif record.health and record.health.state == HEALTHY:
        console.print(f"Drive {record.device_node} healthy according to SMART, "
                      f"but the kernel log mentions it")
    elif record.health:
        console.print(f"[yellow]SMART status for {record.device_node}:[/yellow]\n{escape(str(record.health))}")

    if record.kernel_entries:
        console.print("\n[bold]Most recent kern.log entries:[/bold]")
        for line in record.kernel_entries:
            console.print(Text(line, style="dim"))

    console.print(f"\nIf replacing drive {record.device_node}, note the following:")
    console.print(record_table(record))
    if led_lit:
        console.print("The red failure light should be illuminated on the drive bay.")

    if topology_error is not None:
        show_topology_warning(console, topology_error)
    elif record.bay is not None:
        console.print(f"Bay {record.bay} is located as follows:")
        console.print(bay_panel(record.bay, config, splits))

    unit = f"ceph-osd@{osd}.service"
    console.print(Panel(
        f"On a ceph mon node ([red bold]IRREVERSIBLE[/red bold]):\n"
        f"  ceph osd out osd.{osd}\n"
        f"  ceph osd crush remove osd.{osd}\n"
        f"  ceph auth del osd.{osd}\n\n"
        f"If hot-swapping this disk, on the affected host:\n"
        f"  systemctl stop {unit}\n"
        f"  umount {config.osd_path(osd)}\n\n"
        f"Finally, on a ceph mon node, before physically removing the disk:\n"
        f"  ceph osd rm osd.{osd}\n\n"
        f"Or run [bold]cephbay manage {osd}[/bold] on a mon node to do all of this.",
        title="Removal commands",
        border_style="blue",
        box=box.ROUNDED,
    ))


def show_removal_details(console, host, payload, config, splits):
    """What the controller learned from the OSD host, before touching the cluster."""
    disk = payload.get('disk') or "[device node missing]"
    health = payload.get('health', '')
    console.print(f"Removal details for disk {escape(disk)} on host [bold]{host}[/bold]:")
    console.print(f"It has serial number {escape(str(payload.get('serial')))},\n"
                  f"and has block.db/journal on {escape(str(payload.get('aux_device')))}")
    if health not in (HEALTHY, ABSENT):
        console.print(f"[yellow]SMART status: {escape(health)}[/yellow]")

    bay = payload.get('bay', '')
    if str(bay).isdigit():
        console.print(f"Drive is in bay {bay}, located as follows:")
        console.print(bay_panel(int(bay), config, splits))

    if health != ABSENT:
        console.print(f"To illuminate the drive bay,\nrun 'cephbay led {payload.get('disk')}' on {host}")
    else:
        console.print(f"To illuminate the not-failed drive bays,\nrun 'cephbay led' on {host}")


def history_table(summary):
    table = Table(
        title="Snapshot log: newest record per OSD",
        box=box.ROUNDED,
        header_style="bold cyan",
        border_style="blue",
    )
    table.add_column("OSD", justify="right", style="cyan", no_wrap=True)
    table.add_column("Serial")
    table.add_column("Drive", style="yellow")
    table.add_column("Journal / block.db")
    for row in summary.itertuples(index=False):
        table.add_row(str(row.osd_id), row.serial or "[dim]N/A[/dim]",
                      row.device or "[dim]N/A[/dim]", row.aux_device or "[dim]N/A[/dim]")
    return table
