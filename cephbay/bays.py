"""
Bay resolver: which bay holds the failed drive.

A failed drive usually vanishes from the bus, so its bay is found by comparing
the slots that should hold disks with the slots that currently do. A drive that
was pulled and re-seated comes back with a bogus slot number above the valid
range; that reading is ignored and the same comparison is used instead.
"""

from cephbay.errors import MultipleMissingError, NoMissingSlotError, OutOfRangeError
from cephbay.util import debug_print


def resolve_missing_slot(expected, observed):
    """
    The single expected slot absent from the observed set.

    Raises:
        NoMissingSlotError: every expected slot is populated
        MultipleMissingError: more than one expected slot is empty
    """
    missing = set(expected) - set(observed)
    if not missing:
        raise NoMissingSlotError("Bay not found: every expected slot holds a disk")
    if len(missing) > 1:
        raise MultipleMissingError(missing)
    slot = missing.pop()
    debug_print(f"Missing slot is {slot}")
    return slot


def on_chassis(slot, config):
    return (slot.host, slot.channel, slot.lun) == (config.host, config.channel, config.lun)


def slot_to_bay(slot, config):
    """Bay number of a disk slot; slots above the lower enclosure shift down by one."""
    if not on_chassis(slot, config):
        raise OutOfRangeError(f"{slot} is not on the chassis bus "
                              f"[{config.host}:{config.channel}:*:{config.lun}]")
    number = slot.number
    if number < 0 or number > config.last_disk_slot or number in config.enclosure_slots:
        raise OutOfRangeError(f"Slot {number} is not a disk slot on this chassis")
    if number > config.lower_enclosure:
        return number - 1
    return number


def missing_bay(expected, observed, config):
    """Bay of the single missing slot; MultipleMissingError lists every candidate bay."""
    try:
        slot = resolve_missing_slot(expected, observed)
    except MultipleMissingError as e:
        bays = [slot_to_bay(s, config) for s in e.slots]
        raise MultipleMissingError(e.slots, bays) from None
    return slot_to_bay(slot, config)


def is_reseat_anomaly(slot, config):
    return on_chassis(slot, config) and slot.number > config.last_disk_slot


def bay_for_slot(slot, expected, observed, config):
    """
    Bay of a drive that is still enumerated at `slot`.

    The re-seat check comes before the enclosure offset: slot 61 and above
    never reach slot_to_bay. A drive on another host (a boot disk, say) has
    no bay and raises OutOfRangeError.
    """
    if slot is None:
        debug_print("Device not enumerated on the bus; inferring bay from missing slot")
        return missing_bay(expected, observed, config)
    if is_reseat_anomaly(slot, config):
        debug_print(f"Slot {slot} is above {config.last_disk_slot}: drive was re-seated, "
                    f"inferring bay from missing slot")
        return missing_bay(expected, observed, config)
    return slot_to_bay(slot, config)


def render_bay_diagram(bay, config, splits=None):
    """
    Little picture of the chassis with the bay to pull marked X.

        BACK
    OOOOOO|OOOOOO|OOO      <- bays 45-59
    ...
    OOOOOO|OOOOOO|OOO      <- bays 0-14
        FRONT
    """
    if not 0 <= bay < config.total_bays:
        raise OutOfRangeError(f"Only bays 0-{config.total_bays - 1} exist")
    if splits is None:
        splits = config.column_splits

    lines = ["      BACK"]
    for row in config.row_starts:
        cells = []
        for i in range(config.row_length):
            cells.append("X" if row + i == bay else "O")
            if i in splits:
                cells.append("|")
        lines.append("".join(cells))
    lines.append("      FRONT")
    return "\n".join(lines)
