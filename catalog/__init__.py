"""Catalog Radar: reseller catalog aggregation on top of a durable job queue."""

__version__ = "0.3.0"
