"""
Scripts package for the device group reconciler.

This package contains command-line scripts organized by functionality.

Subpackages:
- reconcile: Scheduled reconciliation of AD device group membership
"""

__version__ = "0.1.0"
