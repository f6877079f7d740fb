"""
cephbay - locate and remove the drive behind a failed Ceph OSD.

Usage:
    from cephbay.chassis import ChassisConfig
    from cephbay.facts import DriveFactCollector

    collector = DriveFactCollector("42", ChassisConfig())
    record = collector.collect()
"""

VERSION = "2.0.0"
