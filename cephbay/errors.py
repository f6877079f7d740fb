"""
Error taxonomy.

Every error can carry the partially resolved DriveRecord so that whatever was
found about the failed OSD is printed before the tool gives up.
"""


class CephBayError(Exception):
    """
    Base class. `record` is the DriveRecord resolved so far, if any; `state` is
    how far a removal got before the error.
    """

    state = None

    def __init__(self, message, record=None):
        super().__init__(message)
        self.record = record


class ConfigError(CephBayError):
    """The chassis configuration is inconsistent."""


class CommandError(CephBayError):
    """An external command failed where failure matters."""

    def __init__(self, command, returncode, stderr, record=None):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        if returncode is None:
            message = f"{command[0]} could not be run: {stderr}"
        else:
            message = f"{' '.join(command)} exited {returncode}"
            if stderr:
                message += f": {stderr}"
        super().__init__(message, record)


class ParseError(CephBayError):
    """Output of an external tool did not have the expected shape."""


# Fatal preconditions

class TopologyError(CephBayError):
    """Enclosure controllers are not where the chassis layout says they are."""


class NotMountedError(CephBayError):
    """The OSD data directory has no mount source."""


# Fatal safety aborts

class NotADiskIssueError(CephBayError):
    """The drive is present, SMART-healthy and the kernel never complained about it."""


class AmbiguousSlotError(CephBayError):
    """The missing slot cannot be pinned down to exactly one address."""


class NoMissingSlotError(AmbiguousSlotError):
    """Every expected slot is populated."""


class MultipleMissingError(AmbiguousSlotError):
    """More than one expected slot is empty."""

    def __init__(self, slots, bays=None, record=None):
        self.slots = sorted(slots)
        self.bays = bays
        listed = ", ".join(str(s) for s in self.slots)
        message = f"There appear to be multiple failed drives (slots {listed})"
        if bays:
            message += f"; candidate bays {', '.join(str(b) for b in bays)}"
        super().__init__(message, record)


class OutOfRangeError(CephBayError):
    """A slot or bay number outside the chassis."""


# Soft lookups: recorded as "unknown", processing continues

class SoftLookupError(CephBayError):
    """A fact that can be reported as unknown without stopping."""


class SerialUnknownError(SoftLookupError):
    """Neither the live device nor the snapshot log knows the serial number."""


class AuxDeviceUnknownError(SoftLookupError):
    """No journal / block.db location, live or logged."""


class HealthCheckError(SoftLookupError):
    """smartctl could not run against the device."""


# Cluster side

class ClusterError(CephBayError):
    """A ceph command against the cluster failed."""


class RemoteRemovalError(CephBayError):
    """The removal step on the OSD host failed; `output` is what it printed."""

    def __init__(self, host, output, record=None):
        self.host = host
        self.output = output
        super().__init__(f"Removal on target system {host} failed", record)


class RemovalAborted(CephBayError):
    """An unexpected error interrupted the removal state machine."""

    def __init__(self, message, state, record=None):
        super().__init__(message, record)
        self.state = state
