"""Geofiltered appointment-slot poller with an HTTP read surface."""

__version__ = "0.1.0"
