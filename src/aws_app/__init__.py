"""Manage AWS resources with a local cache of instance types and prices."""

__version__ = "0.1.0"
