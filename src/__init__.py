"""Job Tracker Sync: local-first sync layer for a personal job tracker."""

__version__ = "0.1.0"
