"""Build coarse zoom levels of a geodetic TMS tile pyramid."""

__version__ = "0.1.0"
