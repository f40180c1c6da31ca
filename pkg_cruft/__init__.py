"""Audit a pkg(8)-managed host for cruft."""

__version__ = "1.0.0"
