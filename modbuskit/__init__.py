"""Modbus RTU poller and configuration database tools."""

__version__ = "0.1.0"