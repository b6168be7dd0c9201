"""Cooling devices for Linux thermal management, driven through sysfs and powercap."""

__version__ = "0.1.0"