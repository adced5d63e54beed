"""Teleport access request plugin for PagerDuty."""

__version__ = "0.1.0"
