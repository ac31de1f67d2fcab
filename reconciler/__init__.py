"""
Device Group Reconciler
=======================

Keeps Active Directory security group membership in line with the devices
that match per-domain search criteria, and records an outcome per device.
"""

__version__ = "0.1.0"
